from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional, Union

DateInput = Union[str, date, datetime, None]

CALENDAR_GRID_DAYS = 42


def parse_timestamp(value: DateInput) -> Optional[datetime]:
    """Parse a record's date field; anything unparseable becomes ``None``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.strptime(raw[:10], "%Y-%m-%d")
    except ValueError:
        return None


def as_reference(value: DateInput = None) -> datetime:
    """Resolve a reference moment; missing or malformed input means now."""
    parsed = parse_timestamp(value)
    return parsed if parsed is not None else datetime.now()


def to_local(value: datetime, reference: datetime) -> datetime:
    """Express ``value`` in the zone of ``reference``.

    Naive timestamps are taken to already be local to the reference.
    """
    zone: Optional[tzinfo] = reference.tzinfo
    if zone is None:
        if value.tzinfo is None:
            return value
        return value.astimezone().replace(tzinfo=None)
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value.astimezone(zone)


def local_date(value: DateInput, reference: datetime) -> Optional[date]:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return to_local(parsed, reference).date()


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def iso_date_key(value: date) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def days_between(start: date, end: date) -> int:
    """Whole calendar days from ``start`` to ``end``."""
    return (end - start).days


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def start_of_week(value: date) -> date:
    return value - timedelta(days=value.weekday())


def js_weekday(value: date) -> int:
    """Weekday with Sunday as 0, the convention habit schedules are stored in."""
    return (value.weekday() + 1) % 7


def month_grid(value: date) -> list[date]:
    first_visible = start_of_week(month_start(value))
    return [first_visible + timedelta(days=offset) for offset in range(CALENDAR_GRID_DAYS)]
