"""
AlAdhan client that turns "today" into this season's Ramadan dates.

AlAdhan speaks DD-MM-YYYY; everything returned from here is YYYY-MM-DD.
Calls are blocking (requests); the state machine runs them off the event loop.
"""
import logging
import re
from datetime import date
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import requests
from pydantic import BaseModel, ConfigDict

from ramadan_goals.core.config import ALADHAN_BASE_URL, DEFAULT_TIMEOUT
from ramadan_goals.core.dates import add_days, format_local_date, is_iso_date, parse_local_date

from .errors import ResolverError, ValidationError
from .models import ResolvedSource, SourceMode
from .validator import WindowValidation, validate_ramadan_window

RAMADAN_MONTH = 9
SHAWWAL_MONTH = 10
MANUAL_CACHE_KEY = "manual|manual|global"

API_DATE_RE = re.compile(r"^[0-9]{1,2}-[0-9]{1,2}-[0-9]{4}$")


class HijriCalendarDay(NamedTuple):
    gregorian_date: str
    hijri_month: int
    hijri_year: int


class ResolvedWindow(BaseModel):
    """A window fetched from AlAdhan, ready to be stored as a ResolvedWindowRecord."""

    model_config = ConfigDict(frozen=True)

    start: str
    end: str
    season_year: int
    hijri_year: int
    source: ResolvedSource
    cache_key: str


def api_date_to_iso(value: Any) -> str:
    """DD-MM-YYYY -> YYYY-MM-DD. Raises ValueError for anything that is not a real day."""
    if not isinstance(value, str):
        raise ValueError(f"Not a DD-MM-YYYY date: {value!r}")
    value = value.strip()
    if not API_DATE_RE.fullmatch(value):
        raise ValueError(f"Not a DD-MM-YYYY date: {value!r}")
    day, month, year = (int(part) for part in value.split("-"))
    return format_local_date(date(year, month, day))


def iso_to_api_date(value: str) -> str:
    """YYYY-MM-DD -> DD-MM-YYYY."""
    parsed = parse_local_date(value)
    return f"{parsed.day:02d}-{parsed.month:02d}-{parsed.year:04d}"


def build_resolver_cache_key(mode, target_hijri_year, city: str = "", country: str = "") -> str:
    """Identity of a resolution: two configurations with the same key resolve to the same window."""
    mode = mode.value if isinstance(mode, SourceMode) else str(mode)
    if mode == SourceMode.LOCATION.value:
        location_part = f"{str(city or '').strip().lower()}|{str(country or '').strip().lower()}"
    else:
        location_part = "global"
    return f"{mode}|{target_hijri_year or ''}|{location_part}"


def surrounding_months(year: int, month: int) -> List[Tuple[int, int]]:
    """(year, month) for the month before, the month itself and the month after."""
    result = []
    for offset in (-1, 0, 1):
        index = year * 12 + (month - 1) + offset
        result.append((index // 12, index % 12 + 1))
    return result


def _dig(payload: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(payload, dict):
            return None
        payload = payload.get(key)
    return payload


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class AladhanResolver:
    """Resolves Ramadan boundaries using api.aladhan.com"""

    def __init__(
        self,
        base_url: str = ALADHAN_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.session = session or requests.Session()
        self.base_url = ALADHAN_BASE_URL
        self.timeout = DEFAULT_TIMEOUT
        self.configure(base_url, timeout)

    def configure(self, base_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        """Apply connection settings (called again when the config file changes)."""
        if base_url:
            self.base_url = str(base_url).rstrip("/")
        if timeout:
            self.timeout = float(timeout)
        self.logger.debug(f"AlAdhan resolver using {self.base_url} (timeout {self.timeout}s)")

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET path and return the decoded payload, or raise ResolverError."""
        url = f"{self.base_url}{path}"
        clean_params = {}
        for key, value in (params or {}).items():
            if value is None:
                continue
            value = str(value).strip()
            if value:
                clean_params[key] = value

        self.logger.debug(f"Making API request to {url} with params {clean_params}")
        try:
            response = self.session.get(
                url,
                params=clean_params,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Network error calling AlAdhan: {e}")
            raise ResolverError(f"AlAdhan request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ResolverError(f"AlAdhan request failed ({response.status_code})")

        try:
            payload = response.json()
        except ValueError as e:
            raise ResolverError("AlAdhan response was not valid JSON.") from e

        if not isinstance(payload, dict):
            raise ResolverError("AlAdhan response was not valid JSON.")

        code = payload.get("code")
        if code is not None and _as_int(code) != 200:
            raise ResolverError(str(payload.get("status") or "AlAdhan returned a non-success response."))

        return payload

    def _validated(self, start: str, end: str) -> WindowValidation:
        try:
            return validate_ramadan_window(start, end)
        except ValidationError as e:
            raise ResolverError(str(e)) from e

    def _calendar_days(self, payload: Dict[str, Any]) -> List[HijriCalendarDay]:
        rows = payload.get("data")
        if not isinstance(rows, list):
            raise ResolverError("AlAdhan calendar response did not contain a list of days.")
        days = []
        for row in rows:
            raw_date = _dig(row, "gregorian", "date")
            try:
                gregorian = api_date_to_iso(raw_date)
            except ValueError as e:
                raise ResolverError(f"AlAdhan returned an unparseable Gregorian date: {raw_date!r}") from e
            days.append(HijriCalendarDay(
                gregorian_date=gregorian,
                hijri_month=_as_int(_dig(row, "hijri", "month", "number")),
                hijri_year=_as_int(_dig(row, "hijri", "year")),
            ))
        return days

    def resolve_target_hijri_year(self, today: str) -> int:
        """Hijri year of the next Ramadan that has not ended yet, seen from today."""
        if not is_iso_date(today):
            raise ResolverError("Could not compute today's date for Hijri resolution.")

        payload = self._get(f"/gToH/{iso_to_api_date(today)}")
        hijri_month = _as_int(_dig(payload, "data", "hijri", "month", "number"))
        hijri_year = _as_int(_dig(payload, "data", "hijri", "year"))
        if not hijri_month or not hijri_year:
            raise ResolverError("AlAdhan did not return a valid Hijri month/year.")

        target = hijri_year if hijri_month <= RAMADAN_MONTH else hijri_year + 1
        self.logger.info(f"Today {today} is Hijri {hijri_month}/{hijri_year}; target Ramadan year {target}")
        return target

    def resolve_global_window(self, today: str, target_hijri_year: Optional[int] = None) -> ResolvedWindow:
        """1 Ramadan to the day before 1 Shawwal, from AlAdhan's Hijri-to-Gregorian conversion."""
        target = target_hijri_year or self.resolve_target_hijri_year(today)

        self.logger.info(f"Fetching global Ramadan boundaries for {target} AH")
        start_payload = self._get(f"/hToG/01-{RAMADAN_MONTH:02d}-{target}")
        shawwal_payload = self._get(f"/hToG/01-{SHAWWAL_MONTH:02d}-{target}")

        try:
            start = api_date_to_iso(_dig(start_payload, "data", "gregorian", "date"))
            shawwal_start = api_date_to_iso(_dig(shawwal_payload, "data", "gregorian", "date"))
        except ValueError as e:
            raise ResolverError("AlAdhan did not return valid Gregorian Ramadan boundaries.") from e

        end = add_days(shawwal_start, -1)
        validation = self._validated(start, end)

        return ResolvedWindow(
            start=start,
            end=end,
            season_year=validation.season_year,
            hijri_year=target,
            source=ResolvedSource.API_GLOBAL,
            cache_key=build_resolver_cache_key(SourceMode.GLOBAL, target),
        )

    def resolve_location_window(
        self,
        today: str,
        city: str,
        country: str,
        target_hijri_year: Optional[int] = None,
    ) -> ResolvedWindow:
        """
        Ramadan as tagged by AlAdhan's calendar for one city. The global window
        is used as an anchor; the three Gregorian months around its start are
        scanned for days whose Hijri date falls in Ramadan of the target year.
        """
        city = str(city or "").strip()
        country = str(country or "").strip()
        if not city or not country:
            raise ResolverError("City and country are required for location-based date resolution.")

        target = target_hijri_year or self.resolve_target_hijri_year(today)
        anchor = self.resolve_global_window(today, target)
        anchor_start = parse_local_date(anchor.start)

        ramadan_days = set()
        for year, month in surrounding_months(anchor_start.year, anchor_start.month):
            self.logger.info(f"Fetching {city}, {country} calendar for {year}-{month:02d}")
            payload = self._get(f"/calendarByCity/{year}/{month}", {"city": city, "country": country})
            for day in self._calendar_days(payload):
                if day.hijri_month == RAMADAN_MONTH and day.hijri_year == target:
                    ramadan_days.add(day.gregorian_date)

        if not ramadan_days:
            raise ResolverError("No Ramadan dates were returned for the selected location.")

        ordered = sorted(ramadan_days)
        start, end = ordered[0], ordered[-1]
        validation = self._validated(start, end)
        if len(ordered) != validation.day_count:
            raise ResolverError("AlAdhan calendar for the selected location has gaps inside Ramadan.")

        return ResolvedWindow(
            start=start,
            end=end,
            season_year=validation.season_year,
            hijri_year=target,
            source=ResolvedSource.API_LOCATION,
            cache_key=build_resolver_cache_key(SourceMode.LOCATION, target, city, country),
        )
