"""Tests for the local deal/vendor cache."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dealsync.client.cache import CachedDeal, CachedVendor, LocalCache, SyncMarker
from dealsync.client.kvstore import (
    CACHED_DEALS_KEY,
    CACHED_VENDORS_KEY,
    LAST_SYNC_KEY,
    KVStoreError,
    MemoryKVStore,
    SQLiteKVStore,
)
from dealsync.core.clock import ManualClock


class FailingStore(MemoryKVStore):
    """Store whose writes always fail."""

    async def set(self, key: str, value: bytes) -> None:
        raise KVStoreError("disk full")


def deal(deal_id: str, title: str = "deal") -> CachedDeal:
    return CachedDeal(id=deal_id, vendor_id="v1", title=title)


@pytest.fixture
def clock() -> ManualClock:
    """Create a manual clock."""
    return ManualClock()


@pytest.fixture
def store() -> MemoryKVStore:
    """Create an in-memory store."""
    return MemoryKVStore()


class TestLocalCacheMerge:
    """Tests for LocalCache.merge()."""

    @pytest.mark.asyncio
    async def test_merge_stamps_and_persists(self, store: MemoryKVStore, clock: ManualClock) -> None:
        """Merged entries should be stamped with now and written to the store."""
        cache = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=10, clock=clock)
        result = await cache.merge([deal("d1")])

        assert [d.id for d in result] == ["d1"]
        assert result[0].cached_at == clock.now()
        stored = json.loads((await store.get(CACHED_DEALS_KEY)) or b"[]")
        assert stored[0]["id"] == "d1"

    @pytest.mark.asyncio
    async def test_new_entries_win_and_come_first(
        self, store: MemoryKVStore, clock: ManualClock
    ) -> None:
        """Incoming entries should replace same-id entries and lead the list."""
        cache = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=10, clock=clock)
        await cache.merge([deal("d1", "old"), deal("d2")])
        clock.advance(minutes=5)
        result = await cache.merge([deal("d1", "new"), deal("d3")])

        assert [d.id for d in result] == ["d1", "d3", "d2"]
        assert result[0].title == "new"

    @pytest.mark.asyncio
    async def test_capacity_trims_oldest(self, store: MemoryKVStore, clock: ManualClock) -> None:
        """The cache should never exceed capacity, dropping the oldest entries."""
        cache = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=3, clock=clock)
        await cache.merge([deal("a"), deal("b"), deal("c")])
        result = await cache.merge([deal("d"), deal("b")])

        assert [d.id for d in result] == ["d", "b", "a"]
        assert len(cache) == 3

    @pytest.mark.asyncio
    async def test_dedup_before_trim(self, store: MemoryKVStore, clock: ManualClock) -> None:
        """Duplicates within one merge should not waste capacity."""
        cache = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=2, clock=clock)
        result = await cache.merge([deal("a", "first"), deal("a", "second"), deal("b")])
        assert [d.id for d in result] == ["a", "b"]
        assert result[0].title == "first"

    @pytest.mark.asyncio
    async def test_stale_entries_dropped_on_merge(
        self, store: MemoryKVStore, clock: ManualClock
    ) -> None:
        """Entries older than the TTL should not survive the next merge."""
        cache = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=10, clock=clock)
        await cache.merge([deal("old")])
        clock.advance(hours=25)
        result = await cache.merge([deal("new")])
        assert [d.id for d in result] == ["new"]

    @pytest.mark.asyncio
    async def test_merge_touches_marker(self, store: MemoryKVStore, clock: ManualClock) -> None:
        """A successful merge should update the last sync marker."""
        marker = SyncMarker(store, LAST_SYNC_KEY)
        cache = LocalCache(
            store, CACHED_VENDORS_KEY, CachedVendor, capacity=5, clock=clock, marker=marker
        )
        await cache.merge([CachedVendor(id="v1", name="Taco Truck")])
        assert marker.value == clock.now()

        reloaded = SyncMarker(store, LAST_SYNC_KEY)
        assert await reloaded.load() == clock.now()

    @pytest.mark.asyncio
    async def test_failed_persist_keeps_memory_and_marker(self, clock: ManualClock) -> None:
        """A storage failure should leave in-memory state usable and the marker untouched."""
        store = FailingStore()
        marker = SyncMarker(store, LAST_SYNC_KEY)
        cache = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=5, clock=clock, marker=marker)
        result = await cache.merge([deal("d1")])

        assert [d.id for d in result] == ["d1"]
        assert cache.get("d1") is not None
        assert marker.value is None


class TestLocalCacheLoad:
    """Tests for LocalCache.load() and clear()."""

    @pytest.mark.asyncio
    async def test_load_filters_stale(self, store: MemoryKVStore, clock: ManualClock) -> None:
        """Entries older than 24 hours should never be returned."""
        writer = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=10, clock=clock)
        await writer.merge([deal("early")])
        clock.advance(hours=2)
        await writer.merge([deal("late")])
        clock.advance(hours=23)

        reader = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=10, clock=clock)
        loaded = await reader.load()
        assert [d.id for d in loaded] == ["late"]

    @pytest.mark.asyncio
    async def test_entries_expire_in_memory(self, store: MemoryKVStore, clock: ManualClock) -> None:
        """Stale entries should disappear from entries without a reload."""
        cache = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=10, clock=clock)
        await cache.merge([deal("d1")])
        clock.advance(hours=24)
        assert cache.entries == []
        assert cache.get("d1") is None

    @pytest.mark.asyncio
    async def test_load_malformed(self, store: MemoryKVStore, clock: ManualClock) -> None:
        """Malformed payloads should load as empty."""
        await store.set(CACHED_DEALS_KEY, b"{not json")
        cache = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=10, clock=clock)
        assert await cache.load() == []

    @pytest.mark.asyncio
    async def test_clear(self, store: MemoryKVStore, clock: ManualClock) -> None:
        """clear() should drop memory and the storage key."""
        cache = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=10, clock=clock)
        await cache.merge([deal("d1")])
        await cache.clear()
        assert len(cache) == 0
        assert CACHED_DEALS_KEY not in store

    @pytest.mark.asyncio
    async def test_sqlite_store_round_trip(self, tmp_path: Path, clock: ManualClock) -> None:
        """The SQLite store should persist the cache across instances."""
        store = SQLiteKVStore(tmp_path / "client.db")
        try:
            cache = LocalCache(store, CACHED_VENDORS_KEY, CachedVendor, capacity=5, clock=clock)
            await cache.merge([CachedVendor(id="v1", name="Taco Truck", latitude=1.0, longitude=2.0)])
        finally:
            store.close()

        store = SQLiteKVStore(tmp_path / "client.db")
        try:
            cache = LocalCache(store, CACHED_VENDORS_KEY, CachedVendor, capacity=5, clock=clock)
            loaded = await cache.load()
            assert loaded[0].name == "Taco Truck"
            assert loaded[0].cached_at == clock.now()
            await store.remove(CACHED_VENDORS_KEY)
            assert await store.get(CACHED_VENDORS_KEY) is None
        finally:
            store.close()
