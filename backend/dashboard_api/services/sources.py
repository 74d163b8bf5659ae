import contextvars
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

import requests

from dashboard_api.core.config import Settings, get_settings
from dashboard_api.core.errors import SourceUnavailableError
from dashboard_api.core.logging import get_logger
from dashboard_api.models.metrics import DateRange, RawDataPoint, SeriesType
from dashboard_api.services.aggregation import round_half_up
from dashboard_api.services.timezone import civil_end_of_day, civil_start_of_day, iter_days

_LOGGER = get_logger(__name__)

SOURCE_ENDPOINTS: dict[SeriesType, str] = {
    SeriesType.sessions: "/session/",
    SeriesType.leads: "/lead/",
    SeriesType.clients: "/client/",
}

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
_POLL_SECONDS = 0.1


@dataclass
class SourceResult:
    series: SeriesType
    points: list[RawDataPoint] = field(default_factory=list)
    error: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def build_query_params(
    date_range: DateRange,
    max_period_days: int,
    periods: list[str] | None = None,
) -> dict[str, str]:
    """Upstream query for ``date_range``.

    An explicit ``periods`` list is sent as is and wins over the day list
    generated for short bounded ranges.
    """
    params = {"count_only": "true"}
    if date_range.is_empty:
        params["all_data"] = "true"
        return params

    if date_range.start is not None:
        params["from"] = civil_start_of_day(date_range.start)
    if date_range.end is not None:
        params["to"] = civil_end_of_day(date_range.end)
    params["period"] = "true"

    if periods:
        params["periods"] = ",".join(periods)
    elif date_range.is_bounded:
        days = [d.isoformat() for d in iter_days(date_range.start, date_range.end)]
        if days and len(days) <= max_period_days:
            params["periods"] = ",".join(days)
    return params


def _coerce_count(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        count = int(value or 0)
    except (TypeError, ValueError):
        return None
    return count if count >= 0 else None


def parse_source_payload(payload: Any, series: SeriesType, requested_periods: list[str] | None = None) -> list[RawDataPoint]:
    """Normalize one upstream response into raw points of ``series``.

    Accepts ``[{date, count}]``, ``{"periods": {date: count}}`` and the
    count-only ``{"count": n}`` shape, which is spread evenly over the
    requested periods when there are any.
    """
    points: list[RawDataPoint] = []

    if isinstance(payload, list):
        for item in payload:
            if not isinstance(item, dict) or not item.get("date"):
                continue
            count = _coerce_count(item.get("count"))
            if count is None:
                _LOGGER.warning("invalid_count_dropped", series=series.value, date=item.get("date"))
                continue
            points.append(RawDataPoint(date=str(item["date"]), count=count, type=series.value))
        return points

    if not isinstance(payload, dict):
        raise SourceUnavailableError(series.value, "unexpected payload shape", retryable=False)

    periods = payload.get("periods")
    if isinstance(periods, dict):
        for day, raw_count in periods.items():
            count = _coerce_count(raw_count)
            if count is None:
                _LOGGER.warning("invalid_count_dropped", series=series.value, date=day)
                continue
            points.append(RawDataPoint(date=str(day), count=count, type=series.value))
        return points

    if "count" in payload:
        total = _coerce_count(payload.get("count"))
        if total is None or not requested_periods:
            _LOGGER.info("count_only_payload_unplaced", series=series.value, count=payload.get("count"))
            return points
        share = round_half_up(Decimal(total) / len(requested_periods))
        return [RawDataPoint(date=day, count=share, type=series.value) for day in requested_periods]

    return points


class AnalyticsSourceClient:
    def __init__(self, settings: Settings | None = None, session: requests.Session | None = None) -> None:
        self.settings = settings or get_settings()
        self.session = session or requests.Session()

    def _url(self, series: SeriesType) -> str:
        return f"{self.settings.ANALYTICS_BASE_URL}{SOURCE_ENDPOINTS[series]}"

    def _request(self, series: SeriesType, params: dict[str, str]) -> Any:
        headers = {"Accept": "application/json"}
        try:
            response = self.session.get(
                self._url(series),
                params=params,
                headers=headers,
                timeout=self.settings.UPSTREAM_TIMEOUT_SECONDS,
            )
        except requests.Timeout as exc:
            raise SourceUnavailableError(series.value, "timeout") from exc
        except requests.RequestException as exc:
            raise SourceUnavailableError(series.value, f"request failed: {exc}") from exc

        if not response.ok:
            raise SourceUnavailableError(
                series.value,
                f"HTTP {response.status_code}",
                retryable=response.status_code in RETRYABLE_STATUS,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise SourceUnavailableError(series.value, "response is not JSON") from exc

    def fetch_series(
        self,
        series: SeriesType,
        params: dict[str, str],
        cancel_event: threading.Event | None = None,
    ) -> SourceResult:
        cancel_event = cancel_event or threading.Event()
        max_attempts = 1 + self.settings.UPSTREAM_MAX_RETRIES
        requested_periods = params["periods"].split(",") if params.get("periods") else None
        result = SourceResult(series=series)

        for attempt in range(1, max_attempts + 1):
            if cancel_event.is_set():
                result.error = f"{series.value}: cancelled"
                return result
            result.attempts = attempt
            try:
                payload = self._request(series, params)
                result.points = parse_source_payload(payload, series, requested_periods)
                result.error = None
                return result
            except SourceUnavailableError as exc:
                result.error = str(exc)
                _LOGGER.warning("source_fetch_failed", series=series.value, attempt=attempt, detail=exc.detail)
                if not exc.retryable or attempt == max_attempts:
                    break
                # Event.wait doubles as the backoff sleep and the cancellation check.
                if cancel_event.wait(self.settings.UPSTREAM_RETRY_BACKOFF_SECONDS):
                    result.error = f"{series.value}: cancelled"
                    return result

        result.points = []
        return result

    def fetch_many(
        self,
        series: Iterable[SeriesType],
        date_range: DateRange,
        cancel_event: threading.Event | None = None,
        periods: list[str] | None = None,
    ) -> dict[SeriesType, SourceResult]:
        wanted = list(dict.fromkeys(series))
        if not wanted:
            return {}

        cancel_event = cancel_event or threading.Event()
        params = build_query_params(date_range, self.settings.PERIODS_PARAM_MAX_DAYS, periods)
        results: dict[SeriesType, SourceResult] = {}

        executor = ThreadPoolExecutor(max_workers=len(wanted), thread_name_prefix="source-fetch")
        futures: dict[Future, SeriesType] = {
            executor.submit(contextvars.copy_context().run, self.fetch_series, s, params, cancel_event): s
            for s in wanted
        }
        pending = set(futures)
        try:
            while pending:
                done, pending = wait(pending, timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    results[futures[future]] = future.result()
                if cancel_event.is_set() and pending:
                    for future in pending:
                        s = futures[future]
                        results[s] = SourceResult(series=s, error=f"{s.value}: cancelled")
                    _LOGGER.info("source_fetch_cancelled", abandoned=[futures[f].value for f in pending])
                    break
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return {s: results[s] for s in wanted}
