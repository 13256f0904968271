"""
Riffle Offline — On-Device Tables
===================================

What:  ORM rows for the device's SQLite file: the pending upload queue,
       the snapshot cache of server entries, and a small key/value table.
Why a separate Base: these tables never exist on the server and must not
       show up in the server's Alembic metadata.
"""

from typing import Any, Dict

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class LocalBase(DeclarativeBase):
    """Base class for tables that live only in the on-device database."""
    pass


class PendingEntryRow(LocalBase):
    """
    One queued entry.

    AUTOINCREMENT keeps local ids strictly increasing across deletes, so a
    removed id is never handed out again (sync keys are built from it).
    """

    __tablename__ = "pending_entries"

    local_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[str] = mapped_column(String(40), nullable=False)
    synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_pending_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )


class CachedEntryRow(LocalBase):
    """Snapshot copy of one server entry."""

    __tablename__ = "cached_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    trip_date: Mapped[str | None] = mapped_column(String(40), nullable=True)

    __table_args__ = (
        Index("idx_cached_trip_date", "trip_date"),
    )


class LocalMetaRow(LocalBase):
    """Device-level settings that survive restarts (added in schema version 2)."""

    __tablename__ = "local_meta"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
