"""
Sanity checks for a Ramadan start/end pair. Used for manual entry, for
AlAdhan responses and for records read back from storage.
"""
from typing import NamedTuple

from ramadan_goals.core.dates import get_days_in_range, is_iso_date

from .errors import ValidationError

MIN_RAMADAN_DAYS = 29
MAX_RAMADAN_DAYS = 30


class WindowValidation(NamedTuple):
    season_year: int
    day_count: int


def validate_ramadan_window(start, end) -> WindowValidation:
    """Return season year and day count, or raise ValidationError with a user-facing reason."""
    start = str(start or "").strip()
    end = str(end or "").strip()

    if not is_iso_date(start) or not is_iso_date(end):
        raise ValidationError("Enter dates in YYYY-MM-DD format.")

    if end < start:
        raise ValidationError("End date must be on or after start date.")

    day_count = len(get_days_in_range(start, end))
    if day_count < MIN_RAMADAN_DAYS or day_count > MAX_RAMADAN_DAYS:
        raise ValidationError("Ramadan date range must be 29 or 30 days.")

    return WindowValidation(season_year=int(start[:4]), day_count=day_count)


def is_valid_ramadan_window(start, end) -> bool:
    try:
        validate_ramadan_window(start, end)
    except ValidationError:
        return False
    return True
