"""
Riffle — Offline Journal Facade Tests
=======================================

What we test:
    ✅ Offline save → queued → back online → synced + SYNC_COMPLETE(count=1)
    ✅ Online save goes straight to the API under the queued entry's key,
       stays queued on a network error, and reports rejections without queueing
    ✅ A save whose response is lost is stored once after the next sync
    ✅ open() probes /health when no state is given; close() waits for a
       background run in flight
    ✅ Storage failures become a warning, never an exception
    ✅ Listing merges pending entries with the cached snapshot
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from riffle.exceptions import StorageFailure
from riffle.offline.background import AsyncioBackgroundHost, register_background_sync
from riffle.offline.client import OfflineJournal
from riffle.offline.connectivity import ConnectivityObserver
from riffle.schemas.offline import SyncCompleteMessage


@pytest_asyncio.fixture
async def host():
    background = AsyncioBackgroundHost(periodic_interval=0)
    yield background
    await background.close()


@pytest.fixture
def journal(store, fake_api, connectivity, channel, engine):
    return OfflineJournal(
        store=store,
        api=fake_api,
        connectivity=connectivity,
        channel=channel,
        engine=engine,
    )


class TestOfflineRoundTrip:

    @pytest.mark.asyncio
    async def test_offline_save_syncs_when_back_online(self, store, fake_api, channel, host):
        connectivity = ConnectivityObserver(initial_online=False)
        journal = OfflineJournal(store=store, api=fake_api, connectivity=connectivity, channel=channel)
        journal.background = register_background_sync(
            journal.engine, channel, connectivity, host=host
        )
        received = []
        journal.subscribe(received.append)

        saved = await journal.save_entry({"title": "Stoneflies on the Deschutes"})
        assert saved.saved and saved.queued and saved.local_id is not None
        assert await journal.pending_count() == 1
        assert fake_api.calls == []

        connectivity.set_online(True)
        await host.wait_idle()

        assert received == [SyncCompleteMessage(count=1)]
        assert await journal.pending_count() == 0
        assert fake_api.created_titles == ["Stoneflies on the Deschutes"]


class TestSaveEntry:

    @pytest.mark.asyncio
    async def test_online_save_goes_to_api(self, journal, fake_api):
        result = await journal.save_entry({"title": "Direct"})

        assert result.saved and not result.queued
        assert result.entry_id == fake_api.entries[0]["id"]
        assert await journal.pending_count() == 0

    @pytest.mark.asyncio
    async def test_network_error_falls_back_to_queue(self, journal, fake_api):
        fake_api.offline = True

        result = await journal.save_entry({"title": "Lost signal in the canyon"})

        assert result.saved and result.queued
        pending = await journal.get_pending_entries()
        assert [p.title for p in pending] == ["Lost signal in the canyon"]

    @pytest.mark.asyncio
    async def test_rejection_is_reported_not_queued(self, journal, fake_api):
        fake_api.reject["fifth trip"] = (403, "Free tier limit reached (3 entries/month). Upgrade to Pro for unlimited.")

        result = await journal.save_entry({"title": "fifth trip"})

        assert result.saved is False
        assert result.error.startswith("Free tier limit reached")
        assert await journal.pending_count() == 0

    @pytest.mark.asyncio
    async def test_direct_save_uses_the_queue_key(self, journal, fake_api, store):
        result = await journal.save_entry({"title": "Keyed"})

        ((_, _, key),) = fake_api.calls
        assert key.startswith(f"{store.device_id}:")
        assert result.saved and not result.queued

    @pytest.mark.asyncio
    async def test_lost_response_is_not_stored_twice(self, journal, fake_api):
        fake_api.lose_responses = 1

        saved = await journal.save_entry({"title": "Caddis"})
        assert saved.saved and saved.queued

        result = await journal.sync_pending_entries()

        assert result.count == 1
        assert fake_api.created_titles == ["Caddis"]
        first_key, retry_key = [key for _, _, key in fake_api.calls]
        assert first_key == retry_key == journal.engine.idempotency_key(saved.local_id)
        assert await journal.pending_count() == 0

    @pytest.mark.asyncio
    async def test_online_save_with_full_storage_posts_directly(self, journal, store, fake_api):
        store.enqueue_pending = AsyncMock(side_effect=StorageFailure("Local storage is full"))

        result = await journal.save_entry({"title": "Disk full"})

        assert result.saved and not result.queued
        assert fake_api.calls == [("create", "Disk full", None)]

    @pytest.mark.asyncio
    async def test_blank_title_is_refused(self, journal, fake_api):
        result = await journal.save_entry({"title": "   "})

        assert result.saved is False
        assert result.error == "Title required"
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_storage_failure_becomes_warning(self, journal, store, connectivity):
        connectivity.set_online(False)
        store.enqueue_pending = AsyncMock(side_effect=StorageFailure("Local storage is full"))

        result = await journal.save_entry({"title": "Nowhere to write"})

        assert result.saved is False
        assert result.warning == "Entry not saved: Local storage is full"


class TestLoadEntries:

    @pytest.mark.asyncio
    async def test_online_refreshes_and_lists_pending_first(self, journal, fake_api, store):
        fake_api.entries = [{"id": 9, "title": "On the server", "trip_date": "2026-08-01"}]
        await store.enqueue_pending({"title": "Still queued"})

        listing = await journal.load_entries()

        assert listing.from_cache is False
        assert listing.pending_count == 1
        assert [e["title"] for e in listing.entries] == ["Still queued", "On the server"]
        assert listing.entries[0]["pending"] is True
        assert listing.entries[1]["pending"] is False
        assert listing.entries[1]["id"] == 9

    @pytest.mark.asyncio
    async def test_offline_shows_cached_snapshot(self, journal, fake_api, store, connectivity):
        await store.replace_cache([{"id": 1, "title": "Cached trip"}])
        connectivity.set_online(False)

        listing = await journal.load_entries()

        assert listing.from_cache is True
        assert [e["title"] for e in listing.entries] == ["Cached trip"]
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_refresh_failure_falls_back_to_cache(self, journal, fake_api, store):
        await store.replace_cache([{"id": 1, "title": "Cached trip"}])
        fake_api.offline = True

        listing = await journal.load_entries()

        assert listing.from_cache is True
        assert [e["id"] for e in listing.entries] == [1]


class TestQueueOperations:

    @pytest.mark.asyncio
    async def test_pass_throughs(self, journal):
        local_id = await journal.add_pending_entry({"title": "manual"})
        assert [p.local_id for p in await journal.get_pending_entries()] == [local_id]

        await journal.cache_entries([{"id": 3, "title": "cached"}])
        assert [c.id for c in await journal.get_cached_entries()] == [3]

        assert journal.is_online() is True
        result = await journal.sync_pending_entries()
        assert result.count == 1

    @pytest.mark.asyncio
    async def test_discard_pending(self, journal, fake_api):
        fake_api.reject["bad"] = (400, "Title required")
        local_id = await journal.add_pending_entry({"title": "bad"})
        result = await journal.sync_pending_entries()
        assert result.failed[0].permanent

        await journal.discard_pending(local_id)

        assert await journal.pending_count() == 0

    @pytest.mark.asyncio
    async def test_sync_now_broadcasts(self, journal, channel):
        await journal.add_pending_entry({"title": "now"})
        received = []
        channel.subscribe(received.append)

        result = await journal.sync_now()

        assert result.count == 1
        assert received == [SyncCompleteMessage(count=1)]

    @pytest.mark.asyncio
    async def test_sync_now_survives_storage_failure(self, journal, store, channel):
        store.list_pending = AsyncMock(side_effect=StorageFailure())
        received = []
        channel.subscribe(received.append)

        result = await journal.sync_now()

        assert result.count == 0 and result.failed == []
        assert received == []

    @pytest.mark.asyncio
    async def test_pending_count_is_zero_when_store_fails(self, journal, store):
        store.count_pending = AsyncMock(side_effect=StorageFailure())
        assert await journal.pending_count() == 0


class TestOpen:

    @pytest.mark.asyncio
    async def test_open_wires_everything(self, tmp_path, host):
        journal = await OfflineJournal.open(
            path=str(tmp_path / "device.db"), token="tok", initial_online=False, host=host,
        )
        try:
            assert journal.is_online() is False
            assert journal.background.registered
            assert host.is_armed("sync-journal")
            assert journal.api.http.headers["Authorization"] == "Bearer tok"
            result = await journal.save_entry({"title": "queued on open"})
            assert result.queued
        finally:
            await journal.close()

    @pytest.mark.asyncio
    async def test_open_probes_health_when_state_not_given(self, tmp_path, host):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(503)

        journal = await OfflineJournal.open(
            path=str(tmp_path / "device.db"), token="tok", host=host,
            transport=httpx.MockTransport(handler),
        )
        try:
            assert journal.is_online() is False
            assert seen == ["/health"]
        finally:
            await journal.close()

    @pytest.mark.asyncio
    async def test_close_lets_a_running_sync_finish(self, tmp_path):
        posted = []

        def handler(request):
            if request.method == "POST":
                posted.append(json.loads(request.content)["title"])
                return httpx.Response(200, json={"entryId": len(posted)})
            return httpx.Response(200, json={"status": "healthy"})

        journal = await OfflineJournal.open(
            path=str(tmp_path / "device.db"), token="tok",
            transport=httpx.MockTransport(handler),
        )
        assert journal.is_online() is True
        await journal.add_pending_entry({"title": "Last cast"})

        assert journal.background.request_sync() is True
        await journal.close()

        assert posted == ["Last cast"]
