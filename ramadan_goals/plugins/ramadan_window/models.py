"""
Typed forms of the persisted ``ramadan`` section and of the state exposed to
the UI. Raw storage data goes through parse_ramadan_settings() once; the rest
of the package only sees these models.
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

DEFAULT_RAMADAN_START = "2026-02-27"
DEFAULT_RAMADAN_END = "2026-03-28"
DEFAULT_SEASON_YEAR = 2026


class SourceMode(str, Enum):
    GLOBAL = "global"
    LOCATION = "location"
    MANUAL = "manual"


class ResolvedSource(str, Enum):
    API_GLOBAL = "api-global"
    API_LOCATION = "api-location"
    MANUAL = "manual"
    FALLBACK = "fallback"


class WindowStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    NEEDS_MANUAL = "needs_manual"


class SettingsParseError(Exception):
    """Raw ramadan settings could not be turned into typed models."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class RamadanWindow(BaseModel):
    """Resolved Ramadan dates as shown to the user."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start: str
    end: str
    season_year: int = Field(alias="seasonYear")


FALLBACK_WINDOW = RamadanWindow(
    start=DEFAULT_RAMADAN_START,
    end=DEFAULT_RAMADAN_END,
    season_year=DEFAULT_SEASON_YEAR,
)


def _blank_if_none(value: Any) -> Any:
    return "" if value is None else value


class RamadanSourceConfig(BaseModel):
    """User choice of how the window is sourced. Changed only by explicit user action."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    source_mode: SourceMode = Field(SourceMode.GLOBAL, alias="sourceMode")
    location_city: str = Field("", alias="locationCity")
    location_country: str = Field("", alias="locationCountry")
    manual_start: str = Field("", alias="manualStart")
    manual_end: str = Field("", alias="manualEnd")
    setup_complete: bool = Field(False, alias="setupComplete")

    @field_validator("source_mode", mode="before")
    @classmethod
    def _known_mode_or_global(cls, value: Any) -> Any:
        if isinstance(value, SourceMode):
            return value
        if value in {mode.value for mode in SourceMode}:
            return value
        return SourceMode.GLOBAL

    @field_validator("location_city", "location_country", "manual_start", "manual_end", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @field_validator("setup_complete", mode="before")
    @classmethod
    def _setup_flag(cls, value: Any) -> Any:
        return False if value is None else value


class ResolvedWindowRecord(BaseModel):
    """Last resolution outcome, persisted next to the source config."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    resolved_start: str = Field(DEFAULT_RAMADAN_START, alias="resolvedStart")
    resolved_end: str = Field(DEFAULT_RAMADAN_END, alias="resolvedEnd")
    resolved_season_year: Optional[int] = Field(DEFAULT_SEASON_YEAR, alias="resolvedSeasonYear")
    resolved_source: ResolvedSource = Field(ResolvedSource.FALLBACK, alias="resolvedSource")
    resolved_hijri_year: Optional[int] = Field(None, alias="resolvedHijriYear")
    resolved_cache_key: str = Field("", alias="resolvedCacheKey")
    resolve_error: str = Field("", alias="resolveError")

    @field_validator("resolved_source", mode="before")
    @classmethod
    def _known_source_or_fallback(cls, value: Any) -> Any:
        if isinstance(value, ResolvedSource):
            return value
        if value in {source.value for source in ResolvedSource}:
            return value
        return ResolvedSource.FALLBACK

    @field_validator("resolved_start", "resolved_end", "resolved_cache_key", "resolve_error", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @field_validator("resolved_season_year", "resolved_hijri_year", mode="before")
    @classmethod
    def _zero_is_unknown(cls, value: Any) -> Any:
        if value in ("", 0):
            return None
        return value


class RamadanSettings(BaseModel):
    """The whole ``ramadan`` section: config plus record."""

    model_config = ConfigDict(frozen=True)

    config: RamadanSourceConfig = Field(default_factory=RamadanSourceConfig)
    record: ResolvedWindowRecord = Field(default_factory=ResolvedWindowRecord)


class RamadanWindowState(BaseModel):
    """Everything the UI reads from the controller."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    window: RamadanWindow
    status: WindowStatus
    source_mode: SourceMode = Field(alias="sourceMode")
    error: str = ""
    record: ResolvedWindowRecord


def parse_ramadan_settings(raw: Any, defaults: Optional[Dict[str, Any]] = None) -> RamadanSettings:
    """
    Turn the loosely typed ``ramadan`` section of the app document into
    RamadanSettings. Missing keys take their defaults (optionally overridden by
    ``defaults``, e.g. a configured default city). Raises SettingsParseError
    when a present field has the wrong type.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise SettingsParseError(f"ramadan settings must be an object, got {type(raw).__name__}")

    merged = dict(defaults or {})
    merged.update(raw)
    try:
        return RamadanSettings(
            config=RamadanSourceConfig.model_validate(merged),
            record=ResolvedWindowRecord.model_validate(merged),
        )
    except PydanticValidationError as e:
        raise SettingsParseError(f"Invalid ramadan settings: {e.error_count()} error(s)", e.errors()) from e


def dump_ramadan_settings(settings: RamadanSettings) -> Dict[str, Any]:
    """Flat camelCase dict, the shape stored in the app document."""
    data = settings.config.model_dump(mode="json", by_alias=True)
    data.update(settings.record.model_dump(mode="json", by_alias=True))
    return data
