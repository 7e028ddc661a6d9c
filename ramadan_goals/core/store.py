"""
Persisted key-value store. Async get/set/remove; the SQL implementation runs
its session work in a worker thread so the event loop never blocks on disk.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError

from ramadan_goals.core.db import session_scope
from ramadan_goals.core.models import StoredDocument

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A store read or write failed."""


class KeyValueStore(ABC):
    """Opaque async store of string values."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        pass


class SqlDocumentStore(KeyValueStore):
    """KeyValueStore on the stored_documents table. Requires init_db()."""

    def _get(self, key: str) -> Optional[str]:
        with session_scope() as session:
            row = session.execute(
                select(StoredDocument).where(StoredDocument.key == key)
            ).scalars().first()
            return row.value if row else None

    def _set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        with session_scope() as session:
            row = session.execute(
                select(StoredDocument).where(StoredDocument.key == key)
            ).scalars().first()
            if row:
                row.value = value
                row.updated_at = now
            else:
                session.add(StoredDocument(key=key, value=value, created_at=now, updated_at=now))

    def _remove(self, key: str) -> None:
        with session_scope() as session:
            session.execute(delete(StoredDocument).where(StoredDocument.key == key))

    async def get(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._get, key)
        except (SQLAlchemyError, RuntimeError) as e:
            raise StoreError(f"Failed to read {key}: {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._set, key, value)
        except (SQLAlchemyError, RuntimeError) as e:
            raise StoreError(f"Failed to write {key}: {e}") from e
        logger.debug(f"Stored {key} ({len(value)} chars)")

    async def remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove, key)
        except (SQLAlchemyError, RuntimeError) as e:
            raise StoreError(f"Failed to remove {key}: {e}") from e
