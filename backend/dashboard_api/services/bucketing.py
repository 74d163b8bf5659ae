from datetime import date, timedelta
from typing import Iterable

from dashboard_api.core.errors import MalformedDateError
from dashboard_api.core.logging import get_logger
from dashboard_api.models.metrics import DailyBucket, DateRange, FunnelVariant, GroupedBucket, RawDataPoint, TimeFrame
from dashboard_api.services.aggregation import conversion_for
from dashboard_api.services.timezone import to_civil_date

_LOGGER = get_logger(__name__)


def bucket_daily(points: Iterable[RawDataPoint], date_range: DateRange | None = None) -> dict[str, DailyBucket]:
    """Sum raw points into one bucket per civil day.

    Points with unparseable dates are dropped, unknown series types are
    ignored, and with a bounded range anything outside it is skipped.
    """
    buckets: dict[str, DailyBucket] = {}
    dropped = 0
    for point in points:
        try:
            day = to_civil_date(point.date)
        except MalformedDateError:
            dropped += 1
            _LOGGER.warning("malformed_date_dropped", date=point.date, series=point.type)
            continue

        if date_range is not None and date_range.is_bounded and not date_range.contains(day):
            continue

        key = day.isoformat()
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = DailyBucket(period=key)
        bucket.add(point.type, point.count)

    if dropped:
        _LOGGER.info("bucketing_completed", buckets=len(buckets), dropped=dropped)
    return buckets


def period_anchor(day: date, time_frame: TimeFrame) -> date:
    if time_frame == TimeFrame.weekly:
        return day - timedelta(days=day.weekday())
    if time_frame == TimeFrame.monthly:
        return day.replace(day=1)
    if time_frame == TimeFrame.yearly:
        return day.replace(month=1, day=1)
    return day


def period_key(day: date, time_frame: TimeFrame) -> str:
    anchor = period_anchor(day, time_frame)
    if time_frame == TimeFrame.monthly:
        return f"{anchor.year:04d}-{anchor.month:02d}"
    if time_frame == TimeFrame.yearly:
        return f"{anchor.year:04d}"
    return anchor.isoformat()


def group_buckets(
    daily: Iterable[DailyBucket],
    time_frame: TimeFrame,
    variant: FunnelVariant | None,
) -> list[GroupedBucket]:
    groups: dict[str, GroupedBucket] = {}
    for bucket in daily:
        day = bucket.day
        key = period_key(day, time_frame)
        group = groups.get(key)
        if group is None:
            group = groups[key] = GroupedBucket(
                period=key,
                anchor=period_anchor(day, time_frame),
                start_date=day,
                end_date=day,
            )
        group.leads += bucket.leads
        group.clients += bucket.clients
        group.sessions += bucket.sessions
        group.start_date = min(group.start_date, day)
        group.end_date = max(group.end_date, day)

    # Conversion is a ratio; it is rebuilt from the grouped sums.
    for group in groups.values():
        group.conversions = conversion_for(group, variant) if variant is not None else 0

    return sorted(groups.values(), key=lambda g: g.anchor)
