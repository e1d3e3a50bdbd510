"""Local read cache for deals and vendors.

This module provides:
- CachedDeal, CachedVendor: Cache entry types
- SyncMarker: Persisted "last successful cache refresh" timestamp
- LocalCache: Bounded, time-evicting cache with merge-by-id semantics

The cache is a reducer over durable state and never touches the network.
Merge rules:
1. Incoming entries are stamped with `cached_at = now`
2. Incoming entries win over existing entries with the same id
3. Entries older than the TTL are dropped
4. The result is truncated to capacity, most recently merged first

Trimming always runs last, after de-duplication.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from dealsync.client.kvstore import KVStoreError
from dealsync.core.clock import SystemClock, ensure_utc

if TYPE_CHECKING:
    from dealsync.client.kvstore import KVStore
    from dealsync.core.clock import Clock

logger = logging.getLogger(__name__)


class CacheEntry:
    """Serialization shared by cache entry dataclasses."""

    id: str
    cached_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}  # type: ignore[arg-type]
        if self.cached_at is not None:
            data["cached_at"] = self.cached_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]):  # type: ignore[no-untyped-def]
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        values = {k: v for k, v in data.items() if k in known}
        if values.get("cached_at"):
            values["cached_at"] = ensure_utc(datetime.fromisoformat(values["cached_at"]))
        return cls(**values)


@dataclass
class CachedDeal(CacheEntry):
    """A deal as last seen from the remote source."""

    id: str
    vendor_id: str
    title: str
    vendor_name: str = ""
    description: str = ""
    discount: str = ""
    original_price: float = 0.0
    discounted_price: float = 0.0
    expires_at: str | None = None
    category: str = ""
    distance: float | None = None
    cached_at: datetime | None = None


@dataclass
class CachedVendor(CacheEntry):
    """A vendor as last seen from the remote source."""

    id: str
    name: str
    category: str = ""
    rating: float = 0.0
    latitude: float | None = None
    longitude: float | None = None
    address: str = ""
    cached_at: datetime | None = None


E = TypeVar("E", CachedDeal, CachedVendor)


class SyncMarker:
    """Timestamp of the last successful cache merge (UI/diagnostics only)."""

    def __init__(self, store: KVStore, key: str) -> None:
        self._store = store
        self._key = key
        self.value: datetime | None = None

    async def load(self) -> datetime | None:
        try:
            raw = await self._store.get(self._key)
        except KVStoreError as e:
            logger.warning("Failed to load %s: %s", self._key, e)
            return self.value
        if raw:
            try:
                self.value = ensure_utc(datetime.fromisoformat(raw.decode()))
            except ValueError:
                logger.warning("Ignoring malformed %s", self._key)
        return self.value

    async def touch(self, when: datetime) -> None:
        self.value = when
        try:
            await self._store.set(self._key, when.isoformat().encode())
        except KVStoreError as e:
            logger.warning("Failed to persist %s: %s", self._key, e)


class LocalCache(Generic[E]):
    """Bounded, time-evicting cache persisted under a single key.

    Usage:
        deals = LocalCache(store, CACHED_DEALS_KEY, CachedDeal, capacity=100)
        await deals.load()
        await deals.merge(fetched)
        fresh = deals.entries
    """

    def __init__(
        self,
        store: KVStore,
        key: str,
        entry_type: type[E],
        capacity: int,
        ttl_hours: float = 24,
        clock: Clock | None = None,
        marker: SyncMarker | None = None,
    ) -> None:
        self._store = store
        self._key = key
        self._entry_type = entry_type
        self._capacity = capacity
        self._ttl = timedelta(hours=ttl_hours)
        self._clock = clock or SystemClock()
        self._marker = marker
        self._entries: list[E] = []

    def _is_fresh(self, entry: E, now: datetime) -> bool:
        if entry.cached_at is None:
            return False
        return now - entry.cached_at < self._ttl

    @property
    def entries(self) -> list[E]:
        """Fresh entries, most recently merged first."""
        now = self._clock.now()
        return [e for e in self._entries if self._is_fresh(e, now)]

    def get(self, entry_id: str) -> E | None:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def size_bytes(self) -> int:
        """Serialized size of the in-memory cache."""
        return len(self._dumps(self._entries))

    @staticmethod
    def _dumps(entries: list[E]) -> bytes:
        return json.dumps([e.to_dict() for e in entries]).encode()

    async def load(self) -> list[E]:
        """Read entries from storage, dropping any older than the TTL."""
        try:
            raw = await self._store.get(self._key)
        except KVStoreError as e:
            logger.warning("Failed to load cache %s: %s", self._key, e)
            return self.entries
        if not raw:
            self._entries = []
            return []
        try:
            loaded = [self._entry_type.from_dict(d) for d in json.loads(raw)]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Discarding malformed cache %s: %s", self._key, e)
            self._entries = []
            return []

        now = self._clock.now()
        self._entries = [e for e in loaded if self._is_fresh(e, now)]
        dropped = len(loaded) - len(self._entries)
        if dropped:
            logger.debug("Skipped %d stale entries in %s", dropped, self._key)
        return list(self._entries)

    async def merge(self, incoming: list[E]) -> list[E]:
        """Merge freshly fetched entries into the cache.

        Returns:
            The new cache contents.
        """
        now = self._clock.now()
        stamped = [replace(e, cached_at=now) for e in incoming]

        seen: set[str] = set()
        merged: list[E] = []
        for entry in [*stamped, *self._entries]:
            if entry.id in seen or not self._is_fresh(entry, now):
                continue
            seen.add(entry.id)
            merged.append(entry)
        merged = merged[: self._capacity]
        self._entries = merged

        try:
            await self._store.set(self._key, self._dumps(merged))
        except KVStoreError as e:
            logger.warning("Failed to persist cache %s: %s", self._key, e)
            return list(merged)

        if self._marker is not None:
            await self._marker.touch(now)
        return list(merged)

    async def clear(self) -> None:
        """Drop all entries from memory and storage."""
        self._entries = []
        try:
            await self._store.remove(self._key)
        except KVStoreError as e:
            logger.warning("Failed to clear cache %s: %s", self._key, e)
