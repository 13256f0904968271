"""
Riffle Offline — Journal Facade
=================================

What:  The single object a UI surface talks to. It hides whether an entry
       went straight to the API or into the on-device queue, and merges
       queued entries with the cached server snapshot for display.
How:   Wires LocalStore, ConnectivityObserver, SyncEngine, BroadcastChannel,
       JournalApiClient and the background trigger together.

Save path:
    online  → queue locally → POST /api/journal (Idempotency-Key of the queued
              entry) → unqueue on success or rejection, keep on NetworkFailure
    offline → queue locally

    StorageFailure never escapes: the result says "not saved" and carries
    a warning for the user.

Usage:
    journal = await OfflineJournal.open(token=jwt)
    result = await journal.save_entry({"title": "Evening rise", ...})
    listing = await journal.load_entries()
    journal.subscribe(lambda msg: refresh_screen())
    await journal.close()
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

import httpx

from riffle.exceptions import NetworkFailure, RemoteRejection, RiffleError, StorageFailure
from riffle.offline.background import (
    AsyncioBackgroundHost,
    BackgroundHost,
    BackgroundSyncHandle,
    register_background_sync,
)
from riffle.offline.connectivity import ConnectivityObserver
from riffle.offline.notifier import BroadcastChannel, MessageHandler, Subscription
from riffle.offline.remote import JournalApiClient
from riffle.offline.storage import LocalStore
from riffle.offline.sync_engine import SyncEngine
from riffle.schemas.offline import (
    CachedEntry,
    EntryListing,
    PendingEntry,
    SaveResult,
    SyncCompleteMessage,
    SyncResult,
)

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"


class OfflineJournal:
    """
    Offline-first access to the user's journal.

    Build with `await OfflineJournal.open(...)` for the full wiring, or pass
    the collaborators explicitly (tests do this).
    """

    def __init__(
        self,
        store: LocalStore,
        api: JournalApiClient,
        connectivity: Optional[ConnectivityObserver] = None,
        channel: Optional[BroadcastChannel] = None,
        engine: Optional[SyncEngine] = None,
    ):
        self.store = store
        self.api = api
        self.connectivity = connectivity or ConnectivityObserver()
        self.channel = channel or BroadcastChannel()
        self.engine = engine or SyncEngine(store, api)
        self.background: Optional[BackgroundSyncHandle] = None
        self._owned_host: Optional[AsyncioBackgroundHost] = None

    @classmethod
    async def open(
        cls,
        path: Optional[str] = None,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        initial_online: Optional[bool] = None,
        host: Optional[BackgroundHost] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "OfflineJournal":
        """
        Open the local store, build the API client and register background sync.

        Args:
            initial_online: starting connectivity state. When None, it is
                taken from a /health probe against the API.
            host: background scheduler. When None, an AsyncioBackgroundHost
                is created and closed again by close().

        Raises:
            StorageFailure: the on-device database could not be opened
        """
        store = await LocalStore.open(path)
        api = JournalApiClient(base_url=base_url, token=token, transport=transport)
        connectivity = ConnectivityObserver(initial_online=bool(initial_online))
        if initial_online is None:
            await connectivity.probe(client=api.http, url=HEALTH_PATH)

        journal = cls(store=store, api=api, connectivity=connectivity)
        if host is None:
            host = journal._owned_host = AsyncioBackgroundHost()
        journal.background = register_background_sync(
            journal.engine, journal.channel, journal.connectivity, host=host
        )
        return journal

    async def close(self) -> None:
        if self.background is not None:
            self.background.close()
        if self._owned_host is not None:
            # In-flight runs finish before the store closes
            await self._owned_host.wait_idle()
            await self._owned_host.close()
            self._owned_host = None
        await self.api.aclose()
        await self.store.close()

    async def __aenter__(self) -> "OfflineJournal":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Thin pass-throughs ────────────────────────────────────────────────

    def is_online(self) -> bool:
        return self.connectivity.is_online()

    def subscribe(self, handler: MessageHandler) -> Subscription:
        return self.channel.subscribe(handler)

    async def add_pending_entry(self, payload: Mapping[str, Any]) -> int:
        return await self.store.enqueue_pending(payload)

    async def get_pending_entries(self) -> List[PendingEntry]:
        return await self.store.list_pending()

    async def sync_pending_entries(self) -> SyncResult:
        return await self.engine.sync_pending_entries()

    async def cache_entries(self, entries: Iterable[Union[CachedEntry, Mapping[str, Any]]]) -> None:
        await self.store.replace_cache(entries)

    async def get_cached_entries(self) -> List[CachedEntry]:
        return await self.store.list_cache()

    async def discard_pending(self, local_id: int) -> None:
        """Drop a queued entry the user gave up on (e.g. permanently rejected)."""
        await self.store.remove_pending(local_id)
        logger.info("Pending entry %d discarded", local_id)

    async def pending_count(self) -> int:
        """Number of queued entries; 0 when the store cannot be read."""
        try:
            return await self.store.count_pending()
        except StorageFailure as e:
            logger.warning("Could not count pending entries: %s", e.message)
            return 0

    # ── Save / load ───────────────────────────────────────────────────────

    async def save_entry(self, payload: Mapping[str, Any]) -> SaveResult:
        """
        Save a new entry, online or not.

        Online, the entry is queued first and then posted with the same
        Idempotency-Key a later sync would use, so a save whose response is
        lost cannot end up stored twice.

        Returns:
            SaveResult describing where the entry ended up. Never raises for
            storage, network or rejection errors.
        """
        title = payload.get("title")
        if not isinstance(title, str) or not title.strip():
            return SaveResult(saved=False, error="Title required")

        if not self.connectivity.is_online():
            return await self._queue(payload)

        try:
            local_id = await self.store.enqueue_pending(payload)
        except StorageFailure as e:
            logger.warning("Could not queue entry before upload: %s", e.message)
            return await self._post_unqueued(payload, e)

        try:
            entry_id = await self.api.create_entry(
                payload, idempotency_key=self.engine.idempotency_key(local_id)
            )
        except NetworkFailure as e:
            logger.info("Direct save failed (%s); entry %d stays queued", e.message, local_id)
            return SaveResult(saved=True, queued=True, local_id=local_id)
        except RemoteRejection as e:
            await self._unqueue(local_id)
            return SaveResult(saved=False, error=e.message)

        await self._unqueue(local_id)
        return SaveResult(saved=True, entry_id=entry_id)

    async def _queue(self, payload: Mapping[str, Any]) -> SaveResult:
        try:
            local_id = await self.store.enqueue_pending(payload)
        except StorageFailure as e:
            return SaveResult(saved=False, warning=f"Entry not saved: {e.message}")
        return SaveResult(saved=True, queued=True, local_id=local_id)

    async def _post_unqueued(self, payload: Mapping[str, Any], storage_error: StorageFailure) -> SaveResult:
        # Nothing is queued, so no later sync can repeat this request
        try:
            entry_id = await self.api.create_entry(payload)
        except NetworkFailure:
            return SaveResult(saved=False, warning=f"Entry not saved: {storage_error.message}")
        except RemoteRejection as e:
            return SaveResult(saved=False, error=e.message)
        return SaveResult(saved=True, entry_id=entry_id)

    async def _unqueue(self, local_id: int) -> None:
        try:
            await self.store.remove_pending(local_id)
        except StorageFailure as e:
            # A later sync replays it under the same key and gets the same entry back
            logger.warning("Entry %d answered but still queued: %s", local_id, e.message)

    async def load_entries(self) -> EntryListing:
        """
        Entries to display: pending ones first, then the server snapshot.

        Online, the snapshot is refreshed first; if that fails the previous
        snapshot is shown and from_cache is set.
        """
        from_cache = True
        if self.connectivity.is_online():
            try:
                await self.engine.refresh_cache()
                from_cache = False
            except RiffleError as e:
                logger.warning("Could not refresh entries, showing cached copy: %s", e.message)

        try:
            pending = await self.store.list_pending()
        except StorageFailure as e:
            logger.warning("Could not read pending entries: %s", e.message)
            pending = []
        try:
            cached = await self.store.list_cache()
        except StorageFailure as e:
            logger.warning("Could not read cached entries: %s", e.message)
            cached = []

        entries = [{**entry.to_dict(), "pending": True} for entry in reversed(pending)]
        entries.extend({**entry.to_dict(), "pending": False} for entry in cached)
        return EntryListing(entries=entries, pending_count=len(pending), from_cache=from_cache)

    # ── Sync ──────────────────────────────────────────────────────────────

    async def sync_now(self) -> SyncResult:
        """
        Manual "sync now". Publishes SYNC_COMPLETE like a background run.

        Returns an empty result when the queue cannot be read.
        """
        try:
            if self.background is not None:
                return await self.background.sync_now()
            result = await self.engine.sync_pending_entries()
            await self.channel.publish(SyncCompleteMessage(count=result.count))
            return result
        except StorageFailure as e:
            logger.warning("Sync now failed: %s", e.message)
            return SyncResult()
