"""
Riffle Backend — Journal Service (Business Logic)
===================================================

What:  CRUD for journal entries plus the two rules the API enforces on
       creation: the free-tier monthly quota and Idempotency-Key replay.
Who:   Called by the /api/journal route handlers.

Create Flow (POST /api/journal):
    ┌───────────────┐   hit    ┌──────────────────────────┐
    │ Idempotency   │────────▶ │ return original entry id │
    │ key lookup    │          └──────────────────────────┘
    └──────┬────────┘
           │ miss
           ▼
    ┌───────────────┐ over ┌─────────────────────┐
    │ Monthly quota │─────▶│ QuotaExceededError  │ (403, free tier only)
    └──────┬────────┘      └─────────────────────┘
           ▼
    ┌───────────────┐ blank ┌─────────────────────┐
    │ Title check   │──────▶│ "Title required"    │ (400)
    └──────┬────────┘       └─────────────────────┘
           ▼
        INSERT

Like the rest of the services, JournalService is stateless: the session is
passed in per call and committed by get_db_session().
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from riffle.config import settings
from riffle.exceptions import DatabaseError, NotFoundError, QuotaExceededError, ValidationError
from riffle.models.journal_entry import JournalEntry
from riffle.schemas.journal import JournalEntryCreate, JournalEntryResponse, JournalEntryUpdate
from riffle.services.auth_service import CurrentUser

logger = logging.getLogger(__name__)


def month_start(now: Optional[datetime] = None) -> datetime:
    """First instant of the current calendar month (UTC)."""
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class JournalService:
    """Journal entry operations scoped to one user."""

    # ── Reads ─────────────────────────────────────────────────────────────

    async def list_entries(
        self,
        db: AsyncSession,
        user_id: int,
        limit: int,
        offset: int = 0,
    ) -> List[JournalEntryResponse]:
        """The user's entries, newest trip first (undated trips last)."""
        query = (
            select(JournalEntry)
            .where(JournalEntry.user_id == user_id)
            .order_by(
                JournalEntry.trip_date.desc().nulls_last(),
                JournalEntry.created_at.desc(),
                JournalEntry.id.desc(),
            )
            .limit(limit)
            .offset(offset)
        )
        return await self._fetch(db, query, "list")

    async def list_public_entries(
        self, db: AsyncSession, limit: int, offset: int = 0
    ) -> List[JournalEntryResponse]:
        """Community feed: public entries of every user."""
        query = (
            select(JournalEntry)
            .where(JournalEntry.is_public.is_(True))
            .order_by(JournalEntry.trip_date.desc().nulls_last(), JournalEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return await self._fetch(db, query, "list public")

    async def get_entry(
        self, db: AsyncSession, user_id: int, entry_id: int
    ) -> Optional[JournalEntryResponse]:
        entry = await self._owned(db, user_id, entry_id)
        return JournalEntryResponse.model_validate(entry) if entry else None

    async def _fetch(self, db: AsyncSession, query, operation: str) -> List[JournalEntryResponse]:
        try:
            rows = (await db.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            logger.error("Journal %s query failed: %s", operation, str(e))
            raise DatabaseError(context={"operation": operation}) from e
        return [JournalEntryResponse.model_validate(row) for row in rows]

    async def _owned(self, db: AsyncSession, user_id: int, entry_id: int) -> Optional[JournalEntry]:
        try:
            return (
                await db.execute(
                    select(JournalEntry).where(
                        JournalEntry.id == entry_id,
                        JournalEntry.user_id == user_id,
                    )
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Journal lookup of %d failed: %s", entry_id, str(e))
            raise DatabaseError(context={"operation": "get", "entry_id": entry_id}) from e

    # ── Create ────────────────────────────────────────────────────────────

    async def count_this_month(self, db: AsyncSession, user_id: int) -> int:
        try:
            return (
                await db.execute(
                    select(func.count())
                    .select_from(JournalEntry)
                    .where(
                        JournalEntry.user_id == user_id,
                        JournalEntry.created_at >= month_start(),
                    )
                )
            ).scalar_one()
        except SQLAlchemyError as e:
            logger.error("Quota count failed for user %d: %s", user_id, str(e))
            raise DatabaseError(context={"operation": "quota"}) from e

    async def _find_by_key(self, db: AsyncSession, user_id: int, key: str) -> Optional[int]:
        try:
            return (
                await db.execute(
                    select(JournalEntry.id).where(
                        JournalEntry.user_id == user_id,
                        JournalEntry.idempotency_key == key,
                    )
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Idempotency lookup failed: %s", str(e))
            raise DatabaseError(context={"operation": "idempotency lookup"}) from e

    async def create_entry(
        self,
        db: AsyncSession,
        user: CurrentUser,
        data: JournalEntryCreate,
        idempotency_key: Optional[str] = None,
    ) -> Tuple[int, bool]:
        """
        Create an entry for `user`.

        Returns:
            (entry_id, duplicate). duplicate is True when idempotency_key
            was already used by this user; no new row is written then.

        Raises:
            QuotaExceededError: free-tier user at the monthly limit
            ValidationError: blank title
            DatabaseError: insert failed
        """
        if idempotency_key:
            existing = await self._find_by_key(db, user.id, idempotency_key)
            if existing is not None:
                logger.info(
                    "Replayed create for user %d (key=%s) → entry %d",
                    user.id, idempotency_key, existing,
                )
                return existing, True

        if not user.is_pro:
            limit = settings.free_tier_monthly_entries
            if await self.count_this_month(db, user.id) >= limit:
                logger.info("User %d hit the free tier limit (%d/month)", user.id, limit)
                raise QuotaExceededError(limit=limit, context={"user_id": user.id})

        title = (data.title or "").strip()
        if not title:
            raise ValidationError(message="Title required", field="title")

        fields = data.model_dump(exclude={"title"})
        entry = JournalEntry(
            user_id=user.id,
            title=title,
            content=fields.get("content") or "",
            location_name=fields.get("location_name"),
            latitude=fields.get("latitude"),
            longitude=fields.get("longitude"),
            river_name=fields.get("river_name"),
            water_conditions=fields.get("water_conditions"),
            weather=fields.get("weather"),
            temperature=fields.get("temperature"),
            wind=fields.get("wind"),
            flies_used=fields.get("flies_used"),
            fish_caught=fields.get("fish_caught") or 0,
            species=fields.get("species"),
            is_public=bool(fields.get("is_public")),
            photos=fields.get("photos") or [],
            trip_date=fields.get("trip_date"),
            idempotency_key=idempotency_key or None,
        )
        try:
            db.add(entry)
            await db.flush()
        except IntegrityError as e:
            # Two requests raced with the same key; the other one won
            await db.rollback()
            if idempotency_key:
                existing = await self._find_by_key(db, user.id, idempotency_key)
                if existing is not None:
                    return existing, True
            logger.error("Journal insert conflict: %s", str(e))
            raise DatabaseError(context={"operation": "create"}) from e
        except SQLAlchemyError as e:
            logger.error("Journal insert failed: %s", str(e))
            raise DatabaseError(context={"operation": "create"}) from e

        logger.info("Entry %d created for user %d (%s)", entry.id, user.id, title)
        return entry.id, False

    # ── Update / delete ───────────────────────────────────────────────────

    async def update_entry(
        self, db: AsyncSession, user_id: int, data: JournalEntryUpdate
    ) -> None:
        """
        Apply the fields present in `data` to the caller's entry.

        Raises:
            ValidationError: no id, or a blank title
            NotFoundError: the entry does not exist or is someone else's
        """
        if data.id is None:
            raise ValidationError(message="Entry ID required", field="id")

        entry = await self._owned(db, user_id, data.id)
        if entry is None:
            raise NotFoundError(entry_id=data.id)

        changes = data.model_dump(exclude_unset=True, exclude={"id"})
        if "title" in changes:
            title = (changes["title"] or "").strip()
            if not title:
                raise ValidationError(message="Title required", field="title")
            changes["title"] = title

        for field, value in changes.items():
            if field not in JournalEntry.EDITABLE_FIELDS:
                continue
            if field == "photos":
                value = value or []
            elif field == "content":
                value = value or ""
            elif field == "fish_caught":
                value = value or 0
            elif field == "is_public":
                value = bool(value)
            setattr(entry, field, value)

        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Journal update of %d failed: %s", data.id, str(e))
            raise DatabaseError(context={"operation": "update", "entry_id": data.id}) from e
        logger.info("Entry %d updated (%s)", data.id, ", ".join(sorted(changes)) or "no fields")

    async def delete_entry(self, db: AsyncSession, user_id: int, entry_id: int) -> None:
        """Delete the caller's entry. Deleting a missing entry is not an error."""
        entry = await self._owned(db, user_id, entry_id)
        if entry is None:
            logger.debug("Delete of missing entry %d ignored", entry_id)
            return
        try:
            await db.delete(entry)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Journal delete of %d failed: %s", entry_id, str(e))
            raise DatabaseError(context={"operation": "delete", "entry_id": entry_id}) from e
        logger.info("Entry %d deleted by user %d", entry_id, user_id)


# ── Module-level singleton ────────────────────────────────────────────────
journal_service = JournalService()
