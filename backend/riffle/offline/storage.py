"""
Riffle Offline — Local Durable Queue
======================================

What:  Crash-safe on-device storage for entries waiting to be uploaded and
       for the last snapshot of the user's server-side journal.
How:   A SQLite file opened through async SQLAlchemy (aiosqlite driver).
       `LocalStore.open()` returns a handle; every operation is a method on
       that handle and runs in its own short transaction.
Who:   Injected into SyncEngine and OfflineJournal. Several processes on the
       same device may open the same file; SQLite serializes their writes.

Schema versioning:
    The database is named DB_NAME and versioned through SQLite's
    `PRAGMA user_version`. Opening a file older than DB_VERSION runs each
    missing migration in order. Migrations only ever add tables or indexes;
    pending entries are never rewritten or dropped.

        version 1: pending_entries, cached_entries
        version 2: local_meta (persistent device id)

Failure semantics:
    Every SQLAlchemy / OS error is re-raised as StorageFailure. Callers
    treat it as "not saved, warn the user", never as a crash.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Iterable, List, Mapping, Optional, Union

from pydantic_core import to_jsonable_python
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from riffle.config import settings
from riffle.exceptions import StorageFailure
from riffle.offline.models import CachedEntryRow, LocalMetaRow, PendingEntryRow
from riffle.schemas.offline import CachedEntry, PendingEntry

logger = logging.getLogger(__name__)

DB_NAME = "riffle-offline"
DB_VERSION = 2

# Keys the queue owns; stripped from incoming payloads
RESERVED_KEYS = frozenset({"localId", "local_id", "synced", "created_at"})

DEVICE_ID_KEY = "device_id"


# ══════════════════════════════════════════════════════════════════════════
# Migrations
# ══════════════════════════════════════════════════════════════════════════

def _migrate_v1(sync_conn) -> None:
    PendingEntryRow.__table__.create(sync_conn, checkfirst=True)
    CachedEntryRow.__table__.create(sync_conn, checkfirst=True)


def _migrate_v2(sync_conn) -> None:
    LocalMetaRow.__table__.create(sync_conn, checkfirst=True)


MIGRATIONS = {
    1: _migrate_v1,
    2: _migrate_v2,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sqlite_url(path: str) -> str:
    if path == ":memory:":
        return "sqlite+aiosqlite://"
    return f"sqlite+aiosqlite:///{path}"


class LocalStore:
    """
    Handle to the on-device database.

    Usage:
        store = await LocalStore.open("./riffle-offline.db")
        local_id = await store.enqueue_pending({"title": "Morning Hatch"})
        for entry in await store.list_pending():
            ...
        await store.close()
    """

    def __init__(self, engine: AsyncEngine, path: str):
        # Use LocalStore.open(); the constructor does no I/O
        self._engine = engine
        self.path = path
        self.device_id: Optional[str] = None

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @classmethod
    async def open(cls, path: Optional[str] = None) -> "LocalStore":
        """
        Open (creating or upgrading as needed) the on-device database.

        Args:
            path: SQLite file path, or ":memory:" for a throwaway store.
                  Defaults to settings.offline_db_path.

        Raises:
            StorageFailure: file cannot be created/opened, or was written by
                a newer schema version than this code understands.
        """
        path = path or settings.offline_db_path
        if path == ":memory:":
            engine = create_async_engine(
                _sqlite_url(path),
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            try:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageFailure(
                    message="Local storage is unavailable",
                    context={"path": path, "error_type": type(e).__name__},
                ) from e
            engine = create_async_engine(_sqlite_url(path))

        store = cls(engine, path)
        try:
            await store._upgrade()
            store.device_id = await store._load_device_id()
        except Exception:
            await engine.dispose()
            raise
        logger.info(
            "Opened local store %s (path=%s, version=%d, device=%s)",
            DB_NAME, path, DB_VERSION, store.device_id,
        )
        return store

    async def close(self) -> None:
        await self._engine.dispose()

    async def __aenter__(self) -> "LocalStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Internal helpers ──────────────────────────────────────────────────

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncGenerator[AsyncConnection, None]:
        """
        One atomic unit of work; commits on exit, rolls back on any error.

        Database and OS errors surface as StorageFailure carrying the
        operation name in its context.
        """
        try:
            async with self._engine.begin() as conn:
                yield conn
        except StorageFailure:
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error("Local store %s failed: %s", operation, str(e))
            raise StorageFailure(
                message=f"Local storage failed during {operation}",
                context={"operation": operation, "error_type": type(e).__name__},
            ) from e

    async def _upgrade(self) -> None:
        async with self._transaction("upgrade") as conn:
            current = (await conn.exec_driver_sql("PRAGMA user_version")).scalar() or 0
            if current > DB_VERSION:
                raise StorageFailure(
                    message="Local storage was created by a newer version of the app",
                    context={"found_version": current, "supported_version": DB_VERSION},
                )
            for version in range(current + 1, DB_VERSION + 1):
                logger.info("Migrating local store %s to version %d", DB_NAME, version)
                await conn.run_sync(MIGRATIONS[version])
                # PRAGMA does not accept bound parameters; version is an int we own
                await conn.exec_driver_sql(f"PRAGMA user_version = {int(version)}")

    async def _load_device_id(self) -> str:
        """Read the persistent device id, generating it on first open."""
        async with self._transaction("device id") as conn:
            existing = (
                await conn.execute(
                    select(LocalMetaRow.value).where(LocalMetaRow.key == DEVICE_ID_KEY)
                )
            ).scalar_one_or_none()
            if existing:
                return existing
            device_id = uuid.uuid4().hex
            await conn.execute(
                insert(LocalMetaRow).values(key=DEVICE_ID_KEY, value=device_id)
            )
            return device_id

    async def schema_version(self) -> int:
        async with self._transaction("schema version") as conn:
            return (await conn.exec_driver_sql("PRAGMA user_version")).scalar() or 0

    # ── Pending queue ─────────────────────────────────────────────────────

    async def enqueue_pending(self, payload: Mapping[str, Any]) -> int:
        """
        Persist a new pending entry and return its local id.

        The payload is stored as-is (minus the queue's own bookkeeping keys);
        created_at is stamped from the device clock.

        Raises:
            StorageFailure: the write did not happen.
        """
        body = {
            key: value for key, value in to_jsonable_python(dict(payload)).items()
            if key not in RESERVED_KEYS
        }
        async with self._transaction("enqueue") as conn:
            result = await conn.execute(
                insert(PendingEntryRow).values(
                    payload=body,
                    created_at=_now_iso(),
                    synced=False,
                )
            )
            local_id = result.inserted_primary_key[0]
        logger.debug("Queued pending entry %d (%s)", local_id, body.get("title"))
        return local_id

    async def list_pending(self) -> List[PendingEntry]:
        """
        All pending entries in insertion order, which is the upload order.

        Ordered by local_id, not created_at: the device clock can move backwards.
        """
        async with self._transaction("list pending") as conn:
            rows = (
                await conn.execute(
                    select(PendingEntryRow).order_by(PendingEntryRow.local_id.asc())
                )
            ).all()
        return [
            PendingEntry(
                local_id=row.local_id,
                payload=row.payload or {},
                created_at=row.created_at,
                synced=bool(row.synced),
            )
            for row in rows
        ]

    async def count_pending(self) -> int:
        async with self._transaction("count pending") as conn:
            return (
                await conn.execute(select(func.count()).select_from(PendingEntryRow))
            ).scalar_one()

    async def remove_pending(self, local_id: int) -> None:
        """Delete a pending entry. Removing an id that is not there is a no-op."""
        async with self._transaction("remove pending") as conn:
            await conn.execute(
                delete(PendingEntryRow).where(PendingEntryRow.local_id == local_id)
            )

    # ── Snapshot cache ────────────────────────────────────────────────────

    async def replace_cache(
        self, entries: Iterable[Union[CachedEntry, Mapping[str, Any]]]
    ) -> None:
        """
        Swap the cached snapshot for `entries` in one transaction.

        Either the whole new snapshot is stored or, on any failure, the
        previous snapshot is left exactly as it was.

        Raises:
            StorageFailure: the swap was rolled back.
        """
        rows = [self._cache_row(entry) for entry in entries]
        async with self._transaction("replace cache") as conn:
            await conn.execute(delete(CachedEntryRow))
            if rows:
                await conn.execute(insert(CachedEntryRow), rows)
        logger.debug("Cache replaced with %d entries", len(rows))

    async def list_cache(self) -> List[CachedEntry]:
        """The last stored snapshot, newest trip first."""
        async with self._transaction("list cache") as conn:
            rows = (
                await conn.execute(
                    select(CachedEntryRow).order_by(
                        CachedEntryRow.trip_date.desc(),
                        CachedEntryRow.id.desc(),
                    )
                )
            ).all()
        return [CachedEntry(id=row.id, payload=row.payload or {}) for row in rows]

    @staticmethod
    def _cache_row(entry: Union[CachedEntry, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(entry, CachedEntry):
            data = entry.to_dict()
        else:
            data = to_jsonable_python(dict(entry))
        entry_id = data.get("id")
        if entry_id is None:
            raise StorageFailure(
                message="Cannot cache an entry without a server id",
                context={"operation": "replace cache"},
            )
        payload = {key: value for key, value in data.items() if key != "id"}
        trip_date = payload.get("trip_date")
        return {
            "id": int(entry_id),
            "payload": payload,
            "trip_date": str(trip_date) if trip_date is not None else None,
        }
