"""
Core DB models: collection registry, schema metadata, and key/value entries.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Integer, JSON, LargeBinary, ForeignKey
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StoreMeta(Base):
    """Single-row-per-key metadata, e.g. schema_version."""
    __tablename__ = "store_meta"

    key = Column(String(64), primary_key=True)
    value = Column(String(255), nullable=False)


class StoreCollection(Base):
    """Registry of named collections and the schema version that introduced each."""
    __tablename__ = "store_collections"

    name = Column(String(64), primary_key=True)
    since_version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class StoreEntry(Base):
    """One value in a collection. JSON values go to value, bytes to blob."""
    __tablename__ = "store_entries"

    collection = Column(String(64), ForeignKey("store_collections.name"), primary_key=True)
    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=True)
    blob = Column(LargeBinary, nullable=True)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)
