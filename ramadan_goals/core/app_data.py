"""
The app document: one JSON object stored under STORAGE_KEY holding goals,
check-ins, circle membership and the ``ramadan`` section.
"""
import copy
import json
import logging
from typing import Any, Dict, Optional

from ramadan_goals.core.store import KeyValueStore, StoreError

STORAGE_KEY = "ramadan-goals-v1"

DEFAULT_APP_DATA: Dict[str, Any] = {
    "goals": [],
    "checkins": {},
    "groups": [],
    "userName": "",
    "social": {
        "activeCircleId": None,
    },
    "ramadan": {},
}


def _section(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def normalize_app_data(raw: Any) -> Dict[str, Any]:
    """Merge raw storage data over the defaults, dropping wrongly typed sections. Unknown keys are kept."""
    parsed = raw if isinstance(raw, dict) else {}
    merged = copy.deepcopy(DEFAULT_APP_DATA)
    merged.update(parsed)
    merged["goals"] = parsed["goals"] if isinstance(parsed.get("goals"), list) else []
    merged["checkins"] = _section(parsed.get("checkins"))
    merged["groups"] = parsed["groups"] if isinstance(parsed.get("groups"), list) else []
    merged["userName"] = parsed["userName"] if isinstance(parsed.get("userName"), str) else ""
    merged["social"] = {**DEFAULT_APP_DATA["social"], **_section(parsed.get("social"))}
    merged["ramadan"] = _section(parsed.get("ramadan"))
    return merged


class AppDataRepository:
    """
    Loads and saves the app document. Store failures are logged and the
    repository keeps working on its in-memory copy for the rest of the session.
    """

    def __init__(self, store: KeyValueStore, storage_key: str = STORAGE_KEY):
        self.store = store
        self.storage_key = storage_key
        self.document: Dict[str, Any] = normalize_app_data(None)
        self.logger = logging.getLogger(self.__class__.__name__)

    async def load(self) -> Dict[str, Any]:
        try:
            raw = await self.store.get(self.storage_key)
        except StoreError as e:
            self.logger.error(f"Error loading app data, using defaults: {e}")
            raw = None

        parsed: Optional[Any] = None
        if raw:
            try:
                parsed = json.loads(raw)
            except ValueError as e:
                self.logger.error(f"Stored app data is not valid JSON, using defaults: {e}")

        self.document = normalize_app_data(parsed)
        return self.document

    async def save(self, document: Dict[str, Any]) -> None:
        """Replace the whole document in one write."""
        self.document = document
        try:
            await self.store.set(self.storage_key, json.dumps(document))
        except StoreError as e:
            self.logger.error(f"Error saving app data, continuing in memory: {e}")

    async def save_section(self, name: str, value: Dict[str, Any]) -> None:
        document = dict(self.document)
        document[name] = value
        await self.save(document)
