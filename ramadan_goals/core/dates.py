"""
Calendar-day helpers. Every value is a plain ``YYYY-MM-DD`` string or a
``datetime.date``; nothing here touches timezones, so a day string always
enumerates as itself regardless of the host's UTC offset.
"""
import re
from datetime import date, timedelta
from typing import Iterator, List, Optional

ISO_DATE_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")


def parse_local_date(value: str) -> date:
    """Parse ``YYYY-MM-DD`` into a date. Raises ValueError on anything else, including impossible days."""
    if not isinstance(value, str) or not ISO_DATE_RE.fullmatch(value):
        raise ValueError(f"Not a YYYY-MM-DD date: {value!r}")
    year, month, day = (int(part) for part in value.split("-"))
    return date(year, month, day)


def format_local_date(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def is_iso_date(value) -> bool:
    """True when value parses and formats back to the same string."""
    try:
        return format_local_date(parse_local_date(value)) == value
    except ValueError:
        return False


def today_str() -> str:
    """Today's date in local wall-clock time."""
    return format_local_date(date.today())


def add_days(value: str, days: int) -> str:
    return format_local_date(parse_local_date(value) + timedelta(days=days))


def iter_days(start: str, end: str) -> Iterator[str]:
    """Yield every day from start to end inclusive. Yields nothing if end precedes start."""
    current = parse_local_date(start)
    last = parse_local_date(end)
    while current <= last:
        yield format_local_date(current)
        current += timedelta(days=1)


def get_days_in_range(start: str, end: str) -> List[str]:
    return list(iter_days(start, end))


def clamp_date(value: str, start: str, end: str) -> str:
    """Clamp value into [start, end]. Canonical day strings compare correctly as text."""
    if value < start:
        return start
    if value > end:
        return end
    return value


def get_ramadan_day(value: str, start: str, end: str) -> Optional[int]:
    """1-based day of Ramadan for value, or None when value is outside the window."""
    current = parse_local_date(value)
    first = parse_local_date(start)
    if current < first or current > parse_local_date(end):
        return None
    return (current - first).days + 1
