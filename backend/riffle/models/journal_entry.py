"""
Riffle Backend — Journal Entry SQLAlchemy Model
=================================================

What:  ORM model for the `journal_entries` table (the canonical record set).
Who:   Used by JournalService for CRUD operations and by Alembic for migrations.

Table notes:
    - Integer primary key: the id the offline cache is keyed by
    - photos: JSON list of uploaded photo URLs
    - idempotency_key: client-supplied key (device id + local queue id);
      unique per user so a replayed offline submission maps to the same row
    - created_at drives the free-tier monthly quota
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from riffle.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JournalEntry(Base):
    """
    A fishing trip journal entry owned by one user.

    Lifecycle:
        1. Created by POST /api/journal (directly, or replayed by the sync engine)
        2. Optionally updated by PUT /api/journal
        3. Deleted by DELETE /api/journal

    Query Patterns:
        - A user's journal: WHERE user_id = ? ORDER BY trip_date DESC, created_at DESC
        - Monthly quota: WHERE user_id = ? AND created_at >= <first of month>
        - Community feed: WHERE is_public ORDER BY created_at DESC
    """

    __tablename__ = "journal_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Trip Narrative ────────────────────────────────────────────────────
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))

    # ── Location ──────────────────────────────────────────────────────────
    location_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    river_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # ── Conditions ────────────────────────────────────────────────────────
    water_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weather: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # ── Catch ─────────────────────────────────────────────────────────────
    flies_used: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fish_caught: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    species: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # ── Sharing & Media ───────────────────────────────────────────────────
    is_public: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    photos: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    trip_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # ── Offline Replay ────────────────────────────────────────────────────
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_journal_user", "user_id"),
        Index("idx_journal_date", "trip_date"),
        Index("idx_journal_public", "is_public"),
        UniqueConstraint("user_id", "idempotency_key", name="uq_journal_user_idempotency"),
    )

    # Columns a client may set on create/update
    EDITABLE_FIELDS = (
        "title", "content", "location_name", "latitude", "longitude",
        "river_name", "water_conditions", "weather", "temperature", "wind",
        "flies_used", "fish_caught", "species", "is_public", "photos", "trip_date",
    )

    def to_dict(self) -> Dict[str, Any]:
        """Column values keyed by name; used to build API responses."""
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}

    def __repr__(self) -> str:
        return (
            f"<JournalEntry(id={self.id}, user_id={self.user_id}, "
            f"title='{self.title}')>"
        )
