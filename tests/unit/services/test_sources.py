"""Unit tests for the upstream analytics source client."""

from __future__ import annotations

import threading
from datetime import date

import pytest
import requests
import structlog

from dashboard_api.core.errors import SourceUnavailableError
from dashboard_api.models.metrics import DateRange, SeriesType
from dashboard_api.services.sources import AnalyticsSourceClient, build_query_params, parse_source_payload


def test_query_params_without_range_request_all_data() -> None:
    """No bounds means the whole history, counted only."""
    assert build_query_params(DateRange(), 60) == {"count_only": "true", "all_data": "true"}


def test_query_params_short_range_lists_every_day() -> None:
    """Ranges up to the limit should send the explicit day list."""
    params = build_query_params(DateRange(start=date(2025, 1, 30), end=date(2025, 2, 2)), 60)

    assert params["from"] == "2025-01-30T00:00:00-03:00"
    assert params["to"] == "2025-02-02T23:59:59-03:00"
    assert params["period"] == "true"
    assert params["periods"] == "2025-01-30,2025-01-31,2025-02-01,2025-02-02"


def test_query_params_long_range_omits_day_list() -> None:
    """Ranges beyond the limit should send only the bounds."""
    params = build_query_params(DateRange(start=date(2025, 1, 1), end=date(2025, 6, 30)), 60)

    assert "periods" not in params
    assert params["from"].startswith("2025-01-01")


def test_query_params_explicit_periods_win_over_generated_list() -> None:
    """A caller-supplied day list is forwarded even past the generated-list limit."""
    days = ["2025-01-01", "2025-03-15", "2025-06-30"]

    params = build_query_params(DateRange(start=date(2025, 1, 1), end=date(2025, 6, 30)), 60, days)

    assert params["periods"] == "2025-01-01,2025-03-15,2025-06-30"
    assert params["from"] == "2025-01-01T00:00:00-03:00"


def test_query_params_open_ended_range() -> None:
    """A single bound is forwarded without a day list."""
    params = build_query_params(DateRange(start=date(2025, 1, 1)), 60)

    assert params["from"] == "2025-01-01T00:00:00-03:00"
    assert "to" not in params
    assert "periods" not in params


def test_parse_list_payload() -> None:
    """List payloads should become points of the fetched series."""
    points = parse_source_payload(
        [{"date": "2025-01-01", "count": 4}, {"date": "2025-01-02", "count": "2"}, {"count": 9}],
        SeriesType.leads,
    )

    assert [(p.date, p.count, p.type) for p in points] == [("2025-01-01", 4, "leads"), ("2025-01-02", 2, "leads")]


def test_parse_payload_drops_invalid_counts() -> None:
    """Negative or non-numeric counts should be dropped, not crash."""
    points = parse_source_payload(
        {"periods": {"2025-01-01": -1, "2025-01-02": "x", "2025-01-03": 5}},
        SeriesType.sessions,
    )

    assert [(p.date, p.count) for p in points] == [("2025-01-03", 5)]


def test_parse_count_only_payload_spreads_over_periods() -> None:
    """A bare total should be split across the requested days."""
    points = parse_source_payload({"count": 10}, SeriesType.clients, ["2025-01-01", "2025-01-02", "2025-01-03"])

    assert [p.count for p in points] == [3, 3, 3]
    assert {p.type for p in points} == {"clients"}


def test_parse_count_only_payload_rounds_half_up() -> None:
    """A share of exactly one half rounds up, matching the conversion rates."""
    points = parse_source_payload({"count": 5}, SeriesType.leads, ["2025-01-01", "2025-01-02"])

    assert [p.count for p in points] == [3, 3]


def test_parse_count_only_payload_without_periods_is_empty() -> None:
    """A total with nowhere to place it yields no points."""
    assert parse_source_payload({"count": 10}, SeriesType.clients) == []


def test_parse_unexpected_payload_shape_raises() -> None:
    """Scalars are not a valid upstream payload."""
    with pytest.raises(SourceUnavailableError) as excinfo:
        parse_source_payload("oops", SeriesType.leads)

    assert excinfo.value.retryable is False


def test_fetch_series_success(settings, fake_session_factory, fake_response) -> None:
    """A healthy source should be read in a single attempt."""
    session = fake_session_factory({"/lead/": [fake_response(200, [{"date": "2025-01-01", "count": 3}])]})
    client = AnalyticsSourceClient(settings, session)

    result = client.fetch_series(SeriesType.leads, {"count_only": "true"})

    assert result.ok
    assert result.attempts == 1
    assert result.points[0].count == 3
    assert session.calls[0]["url"] == "http://localhost:8080/lead/"
    assert session.calls[0]["timeout"] == settings.UPSTREAM_TIMEOUT_SECONDS


def test_fetch_series_retries_transient_failure(settings, fake_session_factory, fake_response) -> None:
    """A 503 followed by success should recover on the second attempt."""
    session = fake_session_factory(
        {"/session/": [fake_response(503), fake_response(200, [{"date": "2025-01-01", "count": 7}])]}
    )
    client = AnalyticsSourceClient(settings, session)

    result = client.fetch_series(SeriesType.sessions, {"count_only": "true"})

    assert result.ok
    assert result.attempts == 2
    assert len(session.calls) == 2


def test_fetch_series_retries_timeouts_then_gives_up(settings, fake_session_factory) -> None:
    """Timeouts should be retried twice, then reported."""
    session = fake_session_factory({"/client/": [requests.Timeout("slow")]})
    client = AnalyticsSourceClient(settings, session)

    result = client.fetch_series(SeriesType.clients, {"count_only": "true"})

    assert not result.ok
    assert result.attempts == 3
    assert len(session.calls) == 3
    assert result.error == "clients: timeout"
    assert result.points == []


def test_fetch_series_does_not_retry_client_errors(settings, fake_session_factory) -> None:
    """A 404 will not fix itself, so it is reported after one call."""
    session = fake_session_factory({})
    client = AnalyticsSourceClient(settings, session)

    result = client.fetch_series(SeriesType.leads, {"count_only": "true"})

    assert result.error == "leads: HTTP 404"
    assert len(session.calls) == 1


def test_fetch_series_reports_non_json_body(settings, fake_session_factory, fake_response) -> None:
    """An unreadable body is a source failure."""
    session = fake_session_factory({"/lead/": [fake_response(200, json_error=True)]})
    client = AnalyticsSourceClient(settings, session)

    result = client.fetch_series(SeriesType.leads, {"count_only": "true"})

    assert result.error == "leads: response is not JSON"


def test_fetch_series_respects_cancellation(settings, fake_session_factory, fake_response) -> None:
    """A cancelled request should not reach the upstream at all."""
    session = fake_session_factory({"/lead/": [fake_response(200, [])]})
    client = AnalyticsSourceClient(settings, session)
    cancel_event = threading.Event()
    cancel_event.set()

    result = client.fetch_series(SeriesType.leads, {"count_only": "true"}, cancel_event)

    assert result.error == "leads: cancelled"
    assert session.calls == []


def test_fetch_many_keeps_partial_results(settings, fake_session_factory, fake_response) -> None:
    """One failing source should not discard the others."""
    session = fake_session_factory(
        {
            "/session/": [fake_response(200, [{"date": "2025-01-01", "count": 100}])],
            "/lead/": [fake_response(500)],
        }
    )
    client = AnalyticsSourceClient(settings, session)

    results = client.fetch_many(
        [SeriesType.sessions, SeriesType.leads],
        DateRange(start=date(2025, 1, 1), end=date(2025, 1, 2)),
    )

    assert list(results) == [SeriesType.sessions, SeriesType.leads]
    assert results[SeriesType.sessions].ok
    assert results[SeriesType.leads].error == "leads: HTTP 500"
    assert all(call["params"]["periods"] == "2025-01-01,2025-01-02" for call in session.calls)


def test_fetch_many_with_nothing_to_fetch(settings) -> None:
    """An empty source list returns immediately."""
    assert AnalyticsSourceClient(settings, object()).fetch_many([], DateRange()) == {}


def test_fetch_many_forwards_explicit_periods(settings, fake_session_factory, fake_response) -> None:
    """Explicit days should reach upstream and drive the count-only spread."""
    session = fake_session_factory({"/lead/": [fake_response(200, {"count": 9})]})
    client = AnalyticsSourceClient(settings, session)

    results = client.fetch_many(
        [SeriesType.leads],
        DateRange(start=date(2025, 1, 1), end=date(2025, 1, 10)),
        periods=["2025-01-01", "2025-01-05", "2025-01-10"],
    )

    assert session.calls[0]["params"]["periods"] == "2025-01-01,2025-01-05,2025-01-10"
    assert [(p.date, p.count) for p in results[SeriesType.leads].points] == [
        ("2025-01-01", 3),
        ("2025-01-05", 3),
        ("2025-01-10", 3),
    ]


def test_fetch_many_keeps_request_context_in_workers(settings, fake_session_factory, fake_response) -> None:
    """Bound log context such as the request id should be visible to fetch threads."""
    seen: list[str | None] = []
    session = fake_session_factory({"/": [fake_response(200, [])]})
    original_get = session.get

    def recording_get(url, params=None, headers=None, timeout=None):
        seen.append(structlog.contextvars.get_contextvars().get("request_id"))
        return original_get(url, params=params, headers=headers, timeout=timeout)

    session.get = recording_get
    client = AnalyticsSourceClient(settings, session)

    structlog.contextvars.bind_contextvars(request_id="req-123")
    try:
        client.fetch_many([SeriesType.sessions, SeriesType.leads], DateRange())
    finally:
        structlog.contextvars.clear_contextvars()

    assert seen == ["req-123", "req-123"]
