"""
Database ORM Models.

============================================================
KEY-VALUE STORE
============================================================

A single table holding serialized blobs by key. The alert store
and the notification history each own one key.

============================================================
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from .engine import Base


def utc_now():
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class KeyValueRecord(Base):
    """
    Serialized state blob.

    Source: alerts.persistence.SqlPersistence
    Update Frequency: Every alert store mutation
    """
    __tablename__ = "key_value_store"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self) -> str:
        return f"<KeyValueRecord(key={self.key}, size={len(self.value or '')})>"


__all__ = ["KeyValueRecord"]
