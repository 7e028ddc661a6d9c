"""
Ramadan window controller: decides where the window comes from, when AlAdhan
has to be asked again, and what the UI sees in the meantime.

Every re-resolution goes through resolve(). Each call bumps a generation
counter and captures the config it was started for; an attempt whose
generation is no longer current when it finishes is discarded.
"""
import asyncio
import logging
from typing import Callable, List, NamedTuple, Optional

from ramadan_goals.core.dates import add_days, is_iso_date, today_str

from .errors import ResolverError, ValidationError
from .models import (
    FALLBACK_WINDOW,
    RamadanSettings,
    RamadanSourceConfig,
    RamadanWindow,
    RamadanWindowState,
    ResolvedSource,
    ResolvedWindowRecord,
    SourceMode,
    WindowStatus,
)
from .resolver import MANUAL_CACHE_KEY, AladhanResolver, build_resolver_cache_key
from .service import RamadanSettingsRepository
from .validator import is_valid_ramadan_window, validate_ramadan_window

logger = logging.getLogger(__name__)

LOCATION_REQUIRED_MESSAGE = "Enter city and country, or switch source mode."
RESOLVE_FAILED_MESSAGE = "Failed to resolve Ramadan dates."

# Ramadan of the previous Hijri year ends roughly 325 days before the next one starts.
TARGET_YEAR_LOOKBACK_DAYS = 300


class ConfigSnapshot(NamedTuple):
    generation: int
    config: RamadanSourceConfig
    use_cache: bool


class ManualWindowResult(NamedTuple):
    ok: bool
    error: str = ""
    season_year: Optional[int] = None


def record_window(record: ResolvedWindowRecord) -> Optional[RamadanWindow]:
    """The record's window if it is still a valid Ramadan range."""
    try:
        validation = validate_ramadan_window(record.resolved_start, record.resolved_end)
    except ValidationError:
        return None
    return RamadanWindow(
        start=record.resolved_start.strip(),
        end=record.resolved_end.strip(),
        season_year=record.resolved_season_year or validation.season_year,
    )


def infer_target_hijri_year(record: ResolvedWindowRecord, today: str) -> Optional[int]:
    """
    Target Hijri year known from an API record without asking AlAdhan: while
    today is on or before the recorded Ramadan's last day and well after the
    previous Ramadan ended, the upcoming Ramadan is still the recorded one.
    """
    if record.resolved_source not in (ResolvedSource.API_GLOBAL, ResolvedSource.API_LOCATION):
        return None
    if not record.resolved_hijri_year or not is_iso_date(today):
        return None
    if not is_valid_ramadan_window(record.resolved_start, record.resolved_end):
        return None
    earliest = add_days(record.resolved_start, -TARGET_YEAR_LOOKBACK_DAYS)
    if earliest < today <= record.resolved_end:
        return record.resolved_hijri_year
    return None


class RamadanWindowController:
    """Owns the window lifecycle: loading -> ready | needs_manual."""

    def __init__(
        self,
        repository: RamadanSettingsRepository,
        resolver: AladhanResolver,
        today_provider: Callable[[], str] = today_str,
        fallback_window: RamadanWindow = FALLBACK_WINDOW,
    ):
        self.repository = repository
        self.resolver = resolver
        self.today_provider = today_provider
        self.settings = RamadanSettings()
        self.logger = logging.getLogger(self.__class__.__name__)

        self._window = fallback_window
        self._status = WindowStatus.LOADING
        self._error = ""
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._persist_lock = asyncio.Lock()
        self._change_callbacks: List[Callable[[RamadanWindowState], None]] = []

    @property
    def window(self) -> RamadanWindow:
        return self._window

    @property
    def status(self) -> WindowStatus:
        return self._status

    @property
    def error(self) -> str:
        return self._error

    @property
    def source_mode(self) -> SourceMode:
        return self.settings.config.source_mode

    @property
    def state(self) -> RamadanWindowState:
        return RamadanWindowState(
            window=self._window,
            status=self._status,
            source_mode=self.source_mode,
            error=self._error,
            record=self.settings.record,
        )

    def register_change_callback(self, callback: Callable[[RamadanWindowState], None]) -> None:
        """Register a callback to be called with the new state after every transition"""
        self._change_callbacks.append(callback)

    def _set_state(self, status: WindowStatus, error: str = "", window: Optional[RamadanWindow] = None) -> None:
        if window is not None:
            self._window = window
        self._status = status
        self._error = error
        state = self.state
        for callback in self._change_callbacks:
            try:
                callback(state)
            except Exception as e:
                self.logger.error(f"Error in state change callback: {e}")

    async def _save(
        self,
        config: Optional[RamadanSourceConfig] = None,
        record: Optional[ResolvedWindowRecord] = None,
    ) -> None:
        """Replace settings in memory, then write the latest full settings."""
        self.settings = RamadanSettings(
            config=config or self.settings.config,
            record=record or self.settings.record,
        )
        async with self._persist_lock:
            await self.repository.save(self.settings)

    async def start(self) -> asyncio.Task:
        """Load persisted settings, show the last known window and resolve."""
        self.settings = await self.repository.load()
        persisted = record_window(self.settings.record)
        if persisted is not None:
            self._window = persisted
        self.logger.info(
            f"Loaded ramadan settings: mode={self.source_mode.value}, "
            f"cache_key={self.settings.record.resolved_cache_key!r}"
        )
        return self.resolve(use_cache=True)

    def resolve(self, use_cache: bool = True) -> asyncio.Task:
        """Start a resolution for the current config. Supersedes any attempt in flight."""
        self._generation += 1
        snapshot = ConfigSnapshot(self._generation, self.settings.config, use_cache)
        self.logger.debug(f"Resolution #{snapshot.generation} requested (use_cache={use_cache})")
        self._task = asyncio.create_task(self._run_resolution(snapshot))
        return self._task

    def _is_current(self, snapshot: ConfigSnapshot) -> bool:
        return snapshot.generation == self._generation

    async def wait_for_resolution(self) -> None:
        """Wait until no resolution is in flight, including ones started meanwhile."""
        while self._task is not None and not self._task.done():
            await self._task

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _run_resolution(self, snapshot: ConfigSnapshot) -> None:
        if not self._is_current(snapshot):
            return
        config = snapshot.config

        if config.source_mode == SourceMode.MANUAL:
            await self._apply_manual(config)
            return

        if config.source_mode == SourceMode.LOCATION and (
            not config.location_city.strip() or not config.location_country.strip()
        ):
            # Missing input, not a failed lookup: keep the window usable
            self._set_state(WindowStatus.READY, LOCATION_REQUIRED_MESSAGE)
            if self.settings.record.resolve_error != LOCATION_REQUIRED_MESSAGE:
                await self._save(record=self.settings.record.model_copy(
                    update={"resolve_error": LOCATION_REQUIRED_MESSAGE}
                ))
            return

        await self._resolve_from_network(snapshot)

    async def _apply_manual(self, config: RamadanSourceConfig) -> None:
        try:
            validation = validate_ramadan_window(config.manual_start, config.manual_end)
        except ValidationError as e:
            self._set_state(WindowStatus.NEEDS_MANUAL, str(e))
            return

        window = RamadanWindow(
            start=config.manual_start.strip(),
            end=config.manual_end.strip(),
            season_year=validation.season_year,
        )
        self._set_state(WindowStatus.READY, "", window)
        await self._save(record=self._manual_record(window))

    def _manual_record(self, window: RamadanWindow) -> ResolvedWindowRecord:
        return ResolvedWindowRecord(
            resolved_start=window.start,
            resolved_end=window.end,
            resolved_season_year=window.season_year,
            resolved_source=ResolvedSource.MANUAL,
            resolved_hijri_year=None,
            resolved_cache_key=MANUAL_CACHE_KEY,
            resolve_error="",
        )

    async def _resolve_from_network(self, snapshot: ConfigSnapshot) -> None:
        config = snapshot.config
        mode = config.source_mode
        self._set_state(WindowStatus.LOADING, "")
        today = self.today_provider()

        try:
            target = infer_target_hijri_year(self.settings.record, today) if snapshot.use_cache else None
            if target is None:
                target = await asyncio.to_thread(self.resolver.resolve_target_hijri_year, today)
            if not self._is_current(snapshot):
                return

            expected_key = build_resolver_cache_key(mode, target, config.location_city, config.location_country)
            record = self.settings.record
            cached = record_window(record)
            if snapshot.use_cache and cached is not None and record.resolved_cache_key == expected_key:
                self.logger.info(f"Ramadan window cache hit for {expected_key}")
                self._set_state(WindowStatus.READY, "", cached)
                if record.resolve_error:
                    await self._save(record=record.model_copy(update={"resolve_error": ""}))
                return

            self.logger.info(f"Resolving Ramadan window from AlAdhan ({expected_key})")
            if mode == SourceMode.LOCATION:
                resolved = await asyncio.to_thread(
                    self.resolver.resolve_location_window,
                    today,
                    config.location_city,
                    config.location_country,
                    target,
                )
            else:
                resolved = await asyncio.to_thread(self.resolver.resolve_global_window, today, target)
        except ResolverError as e:
            message = str(e) or RESOLVE_FAILED_MESSAGE
        except Exception as e:
            self.logger.exception(f"Unexpected error resolving Ramadan window: {e}")
            message = RESOLVE_FAILED_MESSAGE
        else:
            if not self._is_current(snapshot):
                self.logger.info(f"Discarding stale resolution #{snapshot.generation}")
                return
            window = RamadanWindow(start=resolved.start, end=resolved.end, season_year=resolved.season_year)
            self._set_state(WindowStatus.READY, "", window)
            await self._save(record=ResolvedWindowRecord(
                resolved_start=resolved.start,
                resolved_end=resolved.end,
                resolved_season_year=resolved.season_year,
                resolved_source=resolved.source,
                resolved_hijri_year=resolved.hijri_year,
                resolved_cache_key=resolved.cache_key,
                resolve_error="",
            ))
            return

        if not self._is_current(snapshot):
            self.logger.info(f"Discarding stale failure #{snapshot.generation}: {message}")
            return
        self.logger.warning(f"Ramadan window resolution failed: {message}")
        self._set_state(WindowStatus.NEEDS_MANUAL, message)
        await self._save(record=self.settings.record.model_copy(update={"resolve_error": message}))

    async def set_source_mode(self, mode) -> asyncio.Task:
        """Persist the mode and re-resolve, bypassing the cache unless the mode is manual."""
        mode = SourceMode(mode)
        await self._save(
            config=self.settings.config.model_copy(update={"source_mode": mode, "setup_complete": True}),
            record=self.settings.record.model_copy(update={"resolve_error": ""}),
        )
        return self.resolve(use_cache=mode == SourceMode.MANUAL)

    async def update_location(self, city: str, country: str) -> Optional[asyncio.Task]:
        """Persist city/country; re-resolve only when location mode is active."""
        await self._save(
            config=self.settings.config.model_copy(update={
                "location_city": str(city or ""),
                "location_country": str(country or ""),
                "setup_complete": True,
            }),
            record=self.settings.record.model_copy(update={"resolve_error": ""}),
        )
        if self.source_mode == SourceMode.LOCATION:
            return self.resolve(use_cache=True)
        return None

    async def save_manual_window(self, start: str, end: str) -> ManualWindowResult:
        """Validate and apply manual dates. The state changes before this returns."""
        try:
            validation = validate_ramadan_window(start, end)
        except ValidationError as e:
            self._set_state(WindowStatus.NEEDS_MANUAL, str(e))
            return ManualWindowResult(ok=False, error=str(e))

        start, end = str(start).strip(), str(end).strip()
        # Nothing still in flight may overwrite the user's dates
        self._generation += 1
        window = RamadanWindow(start=start, end=end, season_year=validation.season_year)
        self._set_state(WindowStatus.READY, "", window)
        await self._save(
            config=self.settings.config.model_copy(update={
                "source_mode": SourceMode.MANUAL,
                "manual_start": start,
                "manual_end": end,
                "setup_complete": True,
            }),
            record=self._manual_record(window),
        )
        return ManualWindowResult(ok=True, season_year=validation.season_year)

    def retry_resolve(self) -> asyncio.Task:
        """Re-run resolution, ignoring any cached record."""
        return self.resolve(use_cache=False)
