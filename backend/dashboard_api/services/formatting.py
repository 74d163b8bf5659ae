import re
from datetime import date, datetime, timedelta
from typing import Iterable

from dashboard_api.core.errors import MalformedDateError
from dashboard_api.models.metrics import DailyBucket, GroupedBucket, PeriodRecord, TimeFrame
from dashboard_api.services.bucketing import period_anchor

MONTH_ABBREVIATIONS: dict[str, tuple[str, ...]] = {
    "en": ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"),
    "pt-BR": ("Jan", "Fev", "Mar", "Abr", "Mai", "Jun", "Jul", "Ago", "Set", "Out", "Nov", "Dez"),
}

_WEEK_RE = re.compile(r"^(\d{2})/(\d{2}) - (\d{2})/(\d{2})$")


def _month_names(locale: str) -> tuple[str, ...]:
    return MONTH_ABBREVIATIONS.get(locale, MONTH_ABBREVIATIONS["en"])


def format_period(day: date, time_frame: TimeFrame, locale: str = "en") -> str:
    if time_frame == TimeFrame.daily:
        return f"{day.day:02d}/{day.month:02d}/{day.year:04d}"
    if time_frame == TimeFrame.weekly:
        monday = period_anchor(day, TimeFrame.weekly)
        # The last week of year 9999 ends at date.max.
        sunday = monday + timedelta(days=min(6, (date.max - monday).days))
        return f"{monday.strftime('%d/%m')} - {sunday.strftime('%d/%m')}"
    if time_frame == TimeFrame.monthly:
        return f"{_month_names(locale)[day.month - 1].capitalize()} {day.year:04d}"
    return f"{day.year:04d}"


def parse_period(label: str, time_frame: TimeFrame, locale: str = "en", reference_year: int | None = None) -> date:
    """Invert :func:`format_period` back to the period's anchor date.

    Weekly labels carry no year, so ``reference_year`` must be supplied for
    them; a label for a week crossing New Year is ambiguous without it.
    """
    text = label.strip()
    try:
        if time_frame == TimeFrame.daily:
            return datetime.strptime(text, "%d/%m/%Y").date()
        if time_frame == TimeFrame.weekly:
            match = _WEEK_RE.match(text)
            if match is None or reference_year is None:
                raise ValueError(text)
            return date(reference_year, int(match.group(2)), int(match.group(1)))
        if time_frame == TimeFrame.monthly:
            name, year = text.split(" ")
            month = [m.lower() for m in _month_names(locale)].index(name.lower()) + 1
            return date(int(year), month, 1)
        return date(int(text), 1, 1)
    except ValueError as exc:
        raise MalformedDateError(f"Cannot parse {time_frame.value} period {label!r}") from exc


def to_period_records(
    buckets: Iterable[DailyBucket | GroupedBucket],
    time_frame: TimeFrame,
    locale: str = "en",
) -> list[PeriodRecord]:
    records = []
    for bucket in buckets:
        anchor = bucket.anchor if isinstance(bucket, GroupedBucket) else bucket.day
        records.append(
            PeriodRecord(
                period=format_period(anchor, time_frame, locale),
                sort_key=anchor,
                leads=bucket.leads,
                clients=bucket.clients,
                sessions=bucket.sessions,
                conversions=bucket.conversions,
            )
        )
    return sort_records(records)


def sort_records(records: Iterable[PeriodRecord]) -> list[PeriodRecord]:
    # Labels like "Feb 2025" or "30/12 - 05/01" don't sort lexically; the
    # anchor date kept next to the label does.
    return sorted(records, key=lambda record: record.sort_key)
