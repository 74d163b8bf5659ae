"""Dashboard metrics pipeline.

Runs the phases ``Fetching -> Normalizing -> Bucketing -> GapFilling ->
Aggregating -> Grouping -> Formatting -> Sorting`` for one request. Every
invocation builds its own buckets; nothing is shared between requests.
"""

import threading
from datetime import date
from typing import Iterable

from dashboard_api.core.config import Settings, get_settings
from dashboard_api.core.errors import (
    AllSourcesUnavailableError,
    InvalidRequestError,
    InvalidRequestRangeError,
    MalformedDateError,
)
from dashboard_api.core.logging import get_logger
from dashboard_api.models.metrics import (
    FETCHABLE_SERIES,
    DateRange,
    FunnelVariant,
    PipelineResult,
    RawDataPoint,
    SeriesType,
    TimeFrame,
)
from dashboard_api.services.aggregation import apply_conversions, merge_series, select_variant, summarize
from dashboard_api.services.bucketing import bucket_daily, group_buckets
from dashboard_api.services.formatting import to_period_records
from dashboard_api.services.gap_fill import fill_gaps
from dashboard_api.services.sources import AnalyticsSourceClient
from dashboard_api.services.timezone import to_civil_date

_LOGGER = get_logger(__name__)

CARD_TYPE_ALIASES: dict[str, SeriesType] = {
    "session": SeriesType.sessions,
    "sessions": SeriesType.sessions,
    "lead": SeriesType.leads,
    "leads": SeriesType.leads,
    "client": SeriesType.clients,
    "clients": SeriesType.clients,
    "conversion": SeriesType.conversions,
    "conversions": SeriesType.conversions,
}

CARD_SOURCES: dict[SeriesType, tuple[SeriesType, ...]] = {
    SeriesType.sessions: (SeriesType.sessions,),
    SeriesType.leads: (SeriesType.leads,),
    SeriesType.clients: (SeriesType.clients,),
    SeriesType.conversions: (SeriesType.leads, SeriesType.clients),
}


def normalize_card_type(value: str | None) -> SeriesType | None:
    if value is None or not value.strip():
        return None
    card = CARD_TYPE_ALIASES.get(value.strip().lower())
    if card is None:
        raise InvalidRequestError(f"Unknown cardType: {value}")
    return card


def sources_for_card(card: SeriesType | None) -> tuple[SeriesType, ...]:
    if card is None:
        return FETCHABLE_SERIES
    return CARD_SOURCES[card]


def parse_date_range(from_value: str | None, to_value: str | None) -> DateRange:
    try:
        start = to_civil_date(from_value) if from_value else None
        end = to_civil_date(to_value) if to_value else None
    except MalformedDateError as exc:
        raise InvalidRequestRangeError(f"Invalid time value: {exc}") from exc

    if start is not None and end is not None and start > end:
        raise InvalidRequestRangeError("'from' must not be after 'to'")
    return DateRange(start=start, end=end)


def parse_periods(value: str | None) -> list[str] | None:
    """Parse a comma-separated list of civil days into ISO dates, in request order."""
    if value is None or not value.strip():
        return None
    days = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            days.append(to_civil_date(item).isoformat())
        except MalformedDateError as exc:
            raise InvalidRequestRangeError(f"Invalid period: {item!r}") from exc
    if not days:
        raise InvalidRequestRangeError("'periods' must list at least one date")
    return days


def resolve_request_range(
    from_value: str | None,
    to_value: str | None,
    periods: str | None = None,
    full_period: bool = False,
) -> tuple[DateRange, list[str] | None]:
    """Work out the range and explicit day list for a dashboard request.

    ``full_period`` ignores every date filter. Otherwise an explicit
    ``periods`` list sets the range to its earliest and latest day, and
    plain ``from``/``to`` apply only when no list is given.
    """
    if full_period:
        return DateRange(), None
    days = parse_periods(periods)
    if days:
        return DateRange(start=date.fromisoformat(min(days)), end=date.fromisoformat(max(days))), days
    return parse_date_range(from_value, to_value), None


class DashboardPipeline:
    def __init__(self, settings: Settings | None = None, client: AnalyticsSourceClient | None = None) -> None:
        self.settings = settings or get_settings()
        self.client = client or AnalyticsSourceClient(self.settings)

    def _phase(self, result: PipelineResult, name: str, **fields) -> None:
        result.phases.append(name)
        _LOGGER.debug("pipeline_phase", phase=name, **fields)

    def process(
        self,
        points: Iterable[RawDataPoint],
        time_frame: TimeFrame,
        date_range: DateRange | None = None,
        fetched: Iterable[SeriesType | str] | None = None,
        requested_variant: FunnelVariant | None = None,
        result: PipelineResult | None = None,
    ) -> PipelineResult:
        """Aggregate already-fetched points into sorted, formatted records."""
        result = result or PipelineResult()
        points = list(points)
        date_range = date_range or DateRange()
        if fetched is None:
            fetched = {point.type for point in points}

        result.variant = select_variant(
            fetched,
            requested=requested_variant,
            default=FunnelVariant(self.settings.DEFAULT_FUNNEL),
        )

        self._phase(result, "Normalizing", points=len(points))
        daily = bucket_daily(points, date_range)
        self._phase(result, "Bucketing", buckets=len(daily))

        daily = fill_gaps(daily, date_range)
        self._phase(result, "GapFilling", buckets=len(daily))

        apply_conversions(daily, result.variant)
        result.summary = summarize(daily.values(), result.variant)
        self._phase(result, "Aggregating", variant=result.variant.value if result.variant else None)

        if time_frame == TimeFrame.daily:
            buckets = list(daily.values())
        else:
            buckets = group_buckets(daily.values(), time_frame, result.variant)
            self._phase(result, "Grouping", groups=len(buckets))

        result.records = to_period_records(buckets, time_frame, self.settings.MONTH_LOCALE)
        self._phase(result, "Formatting")
        self._phase(result, "Sorting", records=len(result.records))
        self._phase(result, "Done")
        return result

    def run(
        self,
        time_frame: TimeFrame,
        date_range: DateRange,
        card_type: SeriesType | None = None,
        requested_variant: FunnelVariant | None = None,
        cancel_event: threading.Event | None = None,
        periods: list[str] | None = None,
    ) -> PipelineResult:
        result = PipelineResult()
        wanted = sources_for_card(card_type)
        self._phase(result, "Fetching", sources=[s.value for s in wanted])

        fetched = self.client.fetch_many(wanted, date_range, cancel_event, periods)
        result.errors = [r.error for r in fetched.values() if r.error]
        if fetched and all(not r.ok for r in fetched.values()):
            _LOGGER.error("all_sources_unavailable", errors=result.errors)
            raise AllSourcesUnavailableError("; ".join(result.errors))

        points = merge_series({s: r.points for s, r in fetched.items()})
        return self.process(
            points,
            time_frame,
            date_range,
            fetched=wanted,
            requested_variant=requested_variant,
            result=result,
        )
