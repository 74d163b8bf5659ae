from datetime import date

from dashboard_api.core.logging import get_logger
from dashboard_api.models.metrics import DailyBucket, DateRange
from dashboard_api.services.timezone import iter_days

_LOGGER = get_logger(__name__)

# Gaps are only synthesized once at least this many distinct days exist.
MIN_DATES_FOR_FILL = 2


def effective_bounds(existing: list[date], date_range: DateRange | None) -> tuple[date, date]:
    start = min(existing)
    end = max(existing)
    if date_range is not None:
        if date_range.start is not None and date_range.start > start:
            start = date_range.start
        if date_range.end is not None and date_range.end < end:
            end = date_range.end
    return start, end


def fill_gaps(buckets: dict[str, DailyBucket], date_range: DateRange | None = None) -> dict[str, DailyBucket]:
    """Return a copy of ``buckets`` with zero buckets for missing days."""
    filled = dict(buckets)
    existing = [bucket.day for bucket in buckets.values()]

    if len(existing) >= MIN_DATES_FOR_FILL:
        start, end = effective_bounds(existing, date_range)
        added = 0
        for day in iter_days(start, end):
            key = day.isoformat()
            if key not in filled:
                filled[key] = DailyBucket(period=key)
                added += 1
        _LOGGER.debug("gaps_filled", start=start.isoformat(), end=end.isoformat(), added=added)

    if date_range is not None and date_range.is_bounded:
        filled = {key: bucket for key, bucket in filled.items() if date_range.contains(bucket.day)}

    return dict(sorted(filled.items()))
