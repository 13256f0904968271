"""
Riffle — Local Durable Queue Tests
====================================

What we test:
    ✅ Pending entries come back oldest first with sequential local ids
    ✅ Upload order follows local ids even when the device clock jumps back
    ✅ Local ids are never reused after a removal
    ✅ Removing a missing id is a no-op
    ✅ Cache replacement is total and all-or-nothing
    ✅ Upgrading a version-1 file keeps its pending entries
    ✅ Storage problems surface as StorageFailure
"""

import pytest
from sqlalchemy import insert, text
from sqlalchemy.ext.asyncio import create_async_engine

from riffle.exceptions import StorageFailure
from riffle.offline import storage
from riffle.offline.models import PendingEntryRow
from riffle.offline.storage import DB_VERSION, LocalStore, _migrate_v1
from riffle.schemas.offline import CachedEntry


class TestPendingQueue:

    @pytest.mark.asyncio
    async def test_list_pending_is_oldest_first(self, store):
        first = await store.enqueue_pending({"title": "Dawn on the Madison"})
        second = await store.enqueue_pending({"title": "Caddis at dusk"})
        third = await store.enqueue_pending({"title": "Nymphing the riffle"})

        pending = await store.list_pending()

        assert [p.local_id for p in pending] == [first, second, third]
        assert [p.title for p in pending] == [
            "Dawn on the Madison", "Caddis at dusk", "Nymphing the riffle",
        ]
        assert first < second < third
        assert all(p.synced is False for p in pending)

    @pytest.mark.asyncio
    async def test_clock_moving_backwards_keeps_insertion_order(self, store, monkeypatch):
        stamps = iter([
            "2026-06-01T12:00:00+00:00",
            "2026-06-01T11:00:00+00:00",
            "2026-06-01T10:00:00+00:00",
        ])
        monkeypatch.setattr(storage, "_now_iso", lambda: next(stamps))
        for title in ("E1", "E2", "E3"):
            await store.enqueue_pending({"title": title})

        pending = await store.list_pending()

        assert [p.title for p in pending] == ["E1", "E2", "E3"]

    @pytest.mark.asyncio
    async def test_payload_is_kept_verbatim(self, store):
        payload = {
            "title": "Evening rise",
            "river_name": "Henry's Fork",
            "fish_caught": 4,
            "photos": ["https://img.example/1.jpg"],
            "latitude": 44.42,
        }
        await store.enqueue_pending(payload)

        (entry,) = await store.list_pending()
        assert entry.payload == payload
        assert entry.created_at

    @pytest.mark.asyncio
    async def test_queue_bookkeeping_keys_are_stripped(self, store):
        local_id = await store.enqueue_pending(
            {"title": "Hopper day", "localId": 999, "synced": True, "created_at": "yesterday"}
        )

        (entry,) = await store.list_pending()
        assert entry.local_id == local_id
        assert entry.payload == {"title": "Hopper day"}
        assert entry.synced is False
        assert entry.created_at != "yesterday"

    @pytest.mark.asyncio
    async def test_to_dict_flattens_record(self, store):
        local_id = await store.enqueue_pending({"title": "Hopper day"})
        (entry,) = await store.list_pending()

        record = entry.to_dict()
        assert record["title"] == "Hopper day"
        assert record["localId"] == local_id
        assert record["synced"] is False

    @pytest.mark.asyncio
    async def test_local_ids_are_never_reused(self, store):
        await store.enqueue_pending({"title": "one"})
        second = await store.enqueue_pending({"title": "two"})
        await store.remove_pending(second)

        third = await store.enqueue_pending({"title": "three"})

        assert third > second

    @pytest.mark.asyncio
    async def test_remove_pending_twice_is_a_no_op(self, store):
        keep = await store.enqueue_pending({"title": "keep"})
        drop = await store.enqueue_pending({"title": "drop"})

        await store.remove_pending(drop)
        await store.remove_pending(drop)
        await store.remove_pending(424242)

        assert [p.local_id for p in await store.list_pending()] == [keep]

    @pytest.mark.asyncio
    async def test_count_pending(self, store):
        assert await store.count_pending() == 0
        await store.enqueue_pending({"title": "a"})
        await store.enqueue_pending({"title": "b"})
        assert await store.count_pending() == 2

    @pytest.mark.asyncio
    async def test_pending_survives_reopen(self, tmp_path):
        path = str(tmp_path / "queue.db")
        first = await LocalStore.open(path)
        await first.enqueue_pending({"title": "Written before the app was killed"})
        await first.close()

        second = await LocalStore.open(path)
        try:
            (entry,) = await second.list_pending()
            assert entry.title == "Written before the app was killed"
        finally:
            await second.close()


class TestSnapshotCache:

    @pytest.mark.asyncio
    async def test_second_replace_fully_replaces_first(self, store):
        await store.replace_cache([{"id": 1, "title": "A"}, {"id": 2, "title": "B"}])
        await store.replace_cache([{"id": 3, "title": "C"}])

        cached = await store.list_cache()
        assert [c.id for c in cached] == [3]
        assert cached[0].title == "C"

    @pytest.mark.asyncio
    async def test_replace_with_empty_list_clears_cache(self, store):
        await store.replace_cache([{"id": 1, "title": "A"}])
        await store.replace_cache([])
        assert await store.list_cache() == []

    @pytest.mark.asyncio
    async def test_failed_replace_keeps_previous_snapshot(self, store):
        await store.replace_cache([{"id": 1, "title": "A"}, {"id": 2, "title": "B"}])

        # Duplicate primary key breaks the insert after the delete already ran
        with pytest.raises(StorageFailure):
            await store.replace_cache([{"id": 7, "title": "X"}, {"id": 7, "title": "Y"}])

        assert sorted(c.id for c in await store.list_cache()) == [1, 2]

    @pytest.mark.asyncio
    async def test_entry_without_id_is_refused(self, store):
        await store.replace_cache([{"id": 1, "title": "A"}])

        with pytest.raises(StorageFailure):
            await store.replace_cache([{"id": 2, "title": "B"}, {"title": "no id"}])

        assert [c.id for c in await store.list_cache()] == [1]

    @pytest.mark.asyncio
    async def test_cache_is_newest_trip_first(self, store):
        await store.replace_cache([
            CachedEntry(id=1, payload={"title": "May", "trip_date": "2026-05-02"}),
            CachedEntry(id=2, payload={"title": "July", "trip_date": "2026-07-14"}),
            CachedEntry(id=3, payload={"title": "June", "trip_date": "2026-06-20"}),
        ])

        assert [c.title for c in await store.list_cache()] == ["July", "June", "May"]

    @pytest.mark.asyncio
    async def test_cache_does_not_touch_pending(self, store):
        await store.enqueue_pending({"title": "still queued"})
        await store.replace_cache([{"id": 1, "title": "A"}])
        assert await store.count_pending() == 1


class TestSchemaVersions:

    @pytest.mark.asyncio
    async def test_new_file_is_at_current_version(self, store):
        assert await store.schema_version() == DB_VERSION
        assert store.device_id

    @pytest.mark.asyncio
    async def test_device_id_is_stable_across_opens(self, tmp_path):
        path = str(tmp_path / "device.db")
        first = await LocalStore.open(path)
        device_id = first.device_id
        await first.close()

        second = await LocalStore.open(path)
        try:
            assert second.device_id == device_id
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_upgrade_from_version_1_keeps_pending_entries(self, tmp_path):
        path = tmp_path / "old.db"
        old = create_async_engine(f"sqlite+aiosqlite:///{path}")
        async with old.begin() as conn:
            await conn.run_sync(_migrate_v1)
            await conn.execute(
                insert(PendingEntryRow).values(
                    payload={"title": "Queued by the old app"},
                    created_at="2026-04-01T06:00:00+00:00",
                    synced=False,
                )
            )
            await conn.exec_driver_sql("PRAGMA user_version = 1")
        await old.dispose()

        upgraded = await LocalStore.open(str(path))
        try:
            assert await upgraded.schema_version() == DB_VERSION
            assert upgraded.device_id
            (entry,) = await upgraded.list_pending()
            assert entry.title == "Queued by the old app"
        finally:
            await upgraded.close()

    @pytest.mark.asyncio
    async def test_file_from_newer_app_is_refused(self, tmp_path):
        path = tmp_path / "future.db"
        future = create_async_engine(f"sqlite+aiosqlite:///{path}")
        async with future.begin() as conn:
            await conn.exec_driver_sql(f"PRAGMA user_version = {DB_VERSION + 1}")
        await future.dispose()

        with pytest.raises(StorageFailure) as exc_info:
            await LocalStore.open(str(path))
        assert exc_info.value.context["found_version"] == DB_VERSION + 1


class TestStorageFailure:

    @pytest.mark.asyncio
    async def test_unusable_path_raises_storage_failure(self, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")

        with pytest.raises(StorageFailure):
            await LocalStore.open(str(blocker / "riffle-offline.db"))

    @pytest.mark.asyncio
    async def test_database_error_becomes_storage_failure(self, store):
        async with store._engine.begin() as conn:
            await conn.execute(text("DROP TABLE pending_entries"))

        with pytest.raises(StorageFailure) as exc_info:
            await store.enqueue_pending({"title": "nowhere to go"})
        assert exc_info.value.context["operation"] == "enqueue"

    @pytest.mark.asyncio
    async def test_memory_store(self):
        async with await LocalStore.open(":memory:") as memory:
            local_id = await memory.enqueue_pending({"title": "scratch"})
            assert [p.local_id for p in await memory.list_pending()] == [local_id]
