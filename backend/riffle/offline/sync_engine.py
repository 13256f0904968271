"""
Riffle Offline — Sync Engine
==============================

What:  Drains the local pending queue into the journal API, and refreshes
       the local snapshot of the user's server entries.
Who:   Called by the background trigger, the "sync now" button, and the
       OfflineJournal facade.
When:  After connectivity comes back, on a periodic wake-up, or on demand.

Batch flow (sync_pending_entries):
    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐
    │ list_pending │───▶│ create_entry │───▶│remove_pending│──▶ synced
    │ (oldest 1st) │    │  (one at a   │    └──────────────┘
    └──────────────┘    │   time)      │
                        └──────┬───────┘
                               │ NetworkFailure / RemoteRejection
                               ▼
                         left in queue ──▶ failed, continue with next

Guarantees:
    - no loss: an entry leaves the queue only after the API accepted it
    - order: submissions happen in creation order, one in flight at a time
    - every entry read at the start of a batch lands in exactly one of
      result.synced / result.failed
    - no automatic backoff: failed entries wait for the next trigger

Serialization:
    One asyncio.Lock per engine. A call that arrives while a batch is running
    waits for it, then reads the queue again, so an entry is never submitted
    twice by the same process. Across processes sharing one database file,
    the Idempotency-Key header (<device_id>:<local_id>) makes a repeated
    submission return the original server entry instead of a duplicate.
"""

import asyncio
import logging
from typing import Optional, Protocol

from riffle.exceptions import NetworkFailure, RemoteRejection, StorageFailure
from riffle.offline.storage import LocalStore
from riffle.schemas.offline import PendingEntry, SyncFailure, SyncResult

logger = logging.getLogger(__name__)


class JournalApi(Protocol):
    """The remote calls the engine depends on (JournalApiClient in production)."""

    async def create_entry(self, payload, idempotency_key: Optional[str] = None) -> int: ...

    async def list_entries(self) -> list: ...


class SyncEngine:
    """
    Uploads pending entries and keeps the snapshot cache fresh.

    Args:
        store: open LocalStore handle
        api:   remote journal client (create_entry / list_entries)
    """

    def __init__(self, store: LocalStore, api: JournalApi):
        self.store = store
        self.api = api
        self._lock = asyncio.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    def idempotency_key(self, local_id: int) -> str:
        """Key sent with every submission of the queued entry `local_id`."""
        return f"{self.store.device_id}:{local_id}"

    async def sync_pending_entries(self) -> SyncResult:
        """
        Submit every pending entry, oldest first.

        Returns:
            SyncResult with the accepted entries in submission order and
            the failed ones with their error message.

        Raises:
            StorageFailure: the pending list could not be read. Nothing was
                submitted in that case.
        """
        if self._lock.locked():
            logger.debug("Sync already in progress; waiting for it to finish")

        async with self._lock:
            pending = await self.store.list_pending()
            result = SyncResult()
            if not pending:
                logger.debug("Sync skipped: no pending entries")
                return result

            logger.info("Sync started: %d pending entries", len(pending))
            for entry in pending:
                failure = await self._submit(entry)
                if failure is None:
                    result.synced.append(entry)
                else:
                    result.failed.append(failure)

            logger.info(
                "Sync finished: %d synced, %d failed",
                len(result.synced), len(result.failed),
            )
            return result

    async def _submit(self, entry: PendingEntry) -> Optional[SyncFailure]:
        """Deliver one entry. Returns None on success, the failure otherwise."""
        try:
            entry_id = await self.api.create_entry(
                entry.payload,
                idempotency_key=self.idempotency_key(entry.local_id),
            )
        except NetworkFailure as e:
            logger.warning(
                "Entry %d (%s) not synced: %s", entry.local_id, entry.title, e.message
            )
            return SyncFailure(entry=entry, error=e.message)
        except RemoteRejection as e:
            logger.warning(
                "Entry %d (%s) rejected with HTTP %d: %s",
                entry.local_id, entry.title, e.status_code, e.message,
            )
            return SyncFailure(
                entry=entry,
                error=e.message,
                status_code=e.status_code,
                permanent=e.is_permanent,
            )

        try:
            await self.store.remove_pending(entry.local_id)
        except StorageFailure as e:
            # Accepted remotely but still queued; the retry reuses the same key
            logger.warning(
                "Entry %d uploaded as %d but could not be removed locally: %s",
                entry.local_id, entry_id, e.message,
            )
            return SyncFailure(entry=entry, error=e.message)

        logger.debug("Entry %d synced as server entry %d", entry.local_id, entry_id)
        return None

    async def refresh_cache(self) -> int:
        """
        Replace the snapshot cache with the server's current entry list.

        Returns:
            Number of entries now cached.

        Raises:
            NetworkFailure / RemoteRejection: the fetch failed
            StorageFailure: the swap was rolled back

        In every failure case the previous snapshot is left untouched.
        """
        entries = await self.api.list_entries()
        await self.store.replace_cache(entries)
        logger.info("Cache refreshed with %d entries", len(entries))
        return len(entries)
