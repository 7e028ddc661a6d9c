"""
Core DB models: the key-value table behind the persisted app document.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Text

from ramadan_goals.core.db import Base


def _utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StoredDocument(Base):
    """One stored value per key. value is opaque text (the app stores JSON)."""
    __tablename__ = "stored_documents"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)
