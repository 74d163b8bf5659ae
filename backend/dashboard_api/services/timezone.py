"""Civil-time helpers for the dashboard.

All bucketing and range checks happen in Brasilia time. The zone is treated as
a constant UTC-3 offset, so conversions never depend on a tz database or on
the host's locale.
"""

import re
from datetime import date, datetime, time, timedelta, timezone

from dashboard_api.core.errors import MalformedDateError

CIVIL_TIMEZONE = timezone(timedelta(hours=-3), "America/Sao_Paulo")

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_timestamp(value: str | date | datetime) -> datetime:
    """Parse ``value`` into an aware datetime expressed in civil time.

    Bare dates and naive date-times are taken as civil wall time; anything
    carrying an offset is converted to UTC-3.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise MalformedDateError("Empty date value")
        try:
            if _DATE_ONLY_RE.match(text):
                parsed = datetime.combine(date.fromisoformat(text), time.min)
            else:
                parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedDateError(f"Invalid date value: {value!r}") from exc
    else:
        raise MalformedDateError(f"Unsupported date value: {type(value)!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=CIVIL_TIMEZONE)
    try:
        return parsed.astimezone(CIVIL_TIMEZONE)
    except OverflowError as exc:
        # Instants within hours of year 1 or 9999 fall outside datetime once shifted.
        raise MalformedDateError(f"Date value out of range: {value!r}") from exc


def to_civil_date(value: str | date | datetime) -> date:
    return parse_timestamp(value).date()


def civil_date_key(value: str | date | datetime) -> str:
    return to_civil_date(value).isoformat()


def civil_time_key(value: str | date | datetime) -> str:
    return parse_timestamp(value).strftime("%H:%M")


def civil_start_of_day(day: date) -> str:
    return f"{day.isoformat()}T00:00:00-03:00"


def civil_end_of_day(day: date) -> str:
    return f"{day.isoformat()}T23:59:59-03:00"


def iter_days(start: date, end: date):
    # Calendar increments, inclusive on both ends.
    cursor = start
    while cursor <= end:
        yield cursor
        if cursor == date.max:
            return
        cursor += timedelta(days=1)
