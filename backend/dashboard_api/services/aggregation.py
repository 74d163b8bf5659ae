from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Protocol

from dashboard_api.models.metrics import (
    DailyBucket,
    FunnelVariant,
    RawDataPoint,
    SeriesType,
    SummaryTotals,
)


class _FunnelCounts(Protocol):
    leads: int
    clients: int
    sessions: int


# variant -> (numerator field, denominator field)
FUNNEL_FIELDS: dict[FunnelVariant, tuple[str, str]] = {
    FunnelVariant.session_to_lead: ("leads", "sessions"),
    FunnelVariant.lead_to_client: ("clients", "leads"),
}


def round_half_up(value: Decimal) -> int:
    # Half away from zero, unlike round().
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def conversion_rate(numerator: int, denominator: int) -> int:
    """Whole-number percentage of ``numerator / denominator``.

    Rounds half away from zero; a zero denominator gives 0.
    """
    if denominator <= 0:
        return 0
    return round_half_up(Decimal(numerator) * 100 / Decimal(denominator))


def conversion_for(counts: _FunnelCounts, variant: FunnelVariant) -> int:
    numerator_field, denominator_field = FUNNEL_FIELDS[variant]
    return conversion_rate(getattr(counts, numerator_field), getattr(counts, denominator_field))


def select_variant(
    fetched: Iterable[SeriesType | str],
    requested: FunnelVariant | None = None,
    default: FunnelVariant = FunnelVariant.session_to_lead,
) -> FunnelVariant | None:
    known = {s.value for s in SeriesType}
    available = {SeriesType(s) for s in fetched if s in known}

    def _supports(variant: FunnelVariant) -> bool:
        return all(SeriesType(f) in available for f in FUNNEL_FIELDS[variant])

    if requested is not None and _supports(requested):
        return requested

    has_sessions = SeriesType.sessions in available
    has_leads = SeriesType.leads in available
    has_clients = SeriesType.clients in available

    if has_sessions and has_leads and has_clients:
        return default
    if has_sessions and has_leads:
        return FunnelVariant.session_to_lead
    if has_leads and has_clients:
        return FunnelVariant.lead_to_client
    return None


def merge_series(series: Mapping[SeriesType, Iterable[RawDataPoint]]) -> list[RawDataPoint]:
    merged: list[RawDataPoint] = []
    for series_type in sorted(series, key=lambda s: s.value):
        merged.extend(series[series_type])
    return merged


def apply_conversions(buckets: Mapping[str, DailyBucket], variant: FunnelVariant | None) -> None:
    # Without a funnel the received conversions pass through untouched.
    if variant is None:
        return
    for bucket in buckets.values():
        bucket.conversions = conversion_for(bucket, variant)


def summarize(buckets: Iterable[DailyBucket], variant: FunnelVariant | None) -> SummaryTotals:
    totals = SummaryTotals()
    for bucket in buckets:
        totals.sessions += bucket.sessions
        totals.leads += bucket.leads
        totals.clients += bucket.clients
    if variant is not None:
        totals.conversions = conversion_for(totals, variant)
    return totals
