"""
Service layer: load and save the ramadan section of the app document.
"""
import logging
from typing import Any, Dict, Optional

from ramadan_goals.core.app_data import AppDataRepository

from .models import (
    RamadanSettings,
    SettingsParseError,
    dump_ramadan_settings,
    parse_ramadan_settings,
)

SECTION = "ramadan"

logger = logging.getLogger(__name__)


class RamadanSettingsRepository:
    """Typed view of the ``ramadan`` section. Writes always carry the full section."""

    def __init__(self, app_data: AppDataRepository, defaults: Optional[Dict[str, Any]] = None):
        self.app_data = app_data
        self.defaults = defaults or {}

    async def load(self) -> RamadanSettings:
        document = await self.app_data.load()
        try:
            return parse_ramadan_settings(document.get(SECTION), self.defaults)
        except SettingsParseError as e:
            logger.warning(f"Ignoring stored ramadan settings: {e} {e.errors}")
            return parse_ramadan_settings({}, self.defaults)

    async def save(self, settings: RamadanSettings) -> None:
        await self.app_data.save_section(SECTION, dump_ramadan_settings(settings))
