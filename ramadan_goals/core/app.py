import asyncio
import logging
import sys
from typing import Any, Dict, Optional

from .app_data import AppDataRepository
from .config import Config
from .db import dispose_db, init_db
from .store import KeyValueStore, SqlDocumentStore
from ramadan_goals.plugins.ramadan_window.models import RamadanWindowState
from ramadan_goals.plugins.ramadan_window.resolver import AladhanResolver
from ramadan_goals.plugins.ramadan_window.service import RamadanSettingsRepository
from ramadan_goals.plugins.ramadan_window.state_machine import RamadanWindowController


class RamadanApp:
    """Wires config, storage, the AlAdhan resolver and the window controller."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        config: Optional[Config] = None,
        store: Optional[KeyValueStore] = None,
        resolver: Optional[AladhanResolver] = None,
        setup_logging: bool = True,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = config or Config(config_path=config_path)
        self.config.register_change_callback(self.handle_config_change)

        if setup_logging:
            self._setup_logging()

        if store is None:
            init_db(self.config.data)
            store = SqlDocumentStore()
        self.store = store
        self.app_data = AppDataRepository(self.store)

        aladhan_config = self.config.get_section("aladhan")
        self.resolver = resolver or AladhanResolver(
            base_url=aladhan_config.get("base_url"),
            timeout=aladhan_config.get("timeout"),
        )

        ramadan_config = self.config.get_section("ramadan")
        self.repository = RamadanSettingsRepository(
            self.app_data,
            defaults={
                "locationCity": ramadan_config.get("default_city") or "",
                "locationCountry": ramadan_config.get("default_country") or "",
            },
        )
        self.controller = RamadanWindowController(self.repository, self.resolver)
        self.controller.register_change_callback(self._log_state_change)
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _setup_logging(self) -> None:
        """Configure logging to write to both file and stdout"""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        logging_config = self.config.get_section("logging")
        root_logger.setLevel(getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO))

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        log_file = logging_config.get("file")
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Ramadan goals application starting...")

    def _log_state_change(self, state: RamadanWindowState) -> None:
        self.logger.info(
            f"Ramadan window {state.status.value}: {state.window.start}..{state.window.end} "
            f"(mode={state.source_mode.value}{', error=' + state.error if state.error else ''})"
        )

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        """Apply AlAdhan connection settings after the config file changes (watchdog thread)."""
        aladhan_config = new_config.get("aladhan") or {}
        try:
            if self._loop is not None and self._loop.is_running():
                self._loop.call_soon_threadsafe(
                    self.resolver.configure, aladhan_config.get("base_url"), aladhan_config.get("timeout")
                )
            else:
                self.resolver.configure(aladhan_config.get("base_url"), aladhan_config.get("timeout"))
        except Exception as e:
            self.logger.error(f"Error handling config change: {e}", exc_info=True)

    async def start(self) -> None:
        """Load persisted settings and kick off the first resolution."""
        self._loop = asyncio.get_running_loop()
        await self.controller.start()

    async def stop(self) -> None:
        await self.controller.stop()
        self._loop = None

    def cleanup(self) -> None:
        self.config.cleanup()
        dispose_db()

    def run(self) -> None:
        from ramadan_goals.api.server import run_api_server

        try:
            run_api_server(self)
        finally:
            self.cleanup()
