"""Durable key-value storage for the client.

This module provides:
- KVStore: Protocol consumed by the cache, queue and favorites store
- MemoryKVStore: In-process store (tests, ephemeral sessions)
- SQLiteKVStore: SQLite-backed store for desktop hosts

All methods are coroutines and may raise KVStoreError. Callers treat a
storage failure as non-fatal and carry on with in-memory state.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

# Keys used across the client
CACHED_DEALS_KEY = "dealsync:cached_deals"
CACHED_VENDORS_KEY = "dealsync:cached_vendors"
PENDING_ACTIONS_KEY = "dealsync:pending_actions"
LAST_SYNC_KEY = "dealsync:last_sync"
FAVORITES_KEY = "dealsync:favorites"
SUBSCRIPTIONS_KEY = "dealsync:flash_subscriptions"
ALERT_RADIUS_KEY = "dealsync:nearby_radius"
VENDOR_LISTING_KEY = "dealsync:vendor_listing"


class KVStoreError(Exception):
    """Storage backend failed."""


class KVStore(Protocol):
    """Async byte store addressed by string keys."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryKVStore:
    """Dictionary-backed store."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class SQLiteKVStore:
    """SQLite-backed store.

    Blocking sqlite calls run in a worker thread so the event loop is never
    stalled by disk I/O.
    """

    def __init__(self, db_path: Path) -> None:
        """Open (or create) the store.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL
            )
        """)
        logger.debug("Opened key-value store at %s", self._db_path)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def _get(self, key: str) -> bytes | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else bytes(row[0])

    def _set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (key, sqlite3.Binary(value)),
            )

    def _remove(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    async def get(self, key: str) -> bytes | None:
        try:
            return await asyncio.to_thread(self._get, key)
        except sqlite3.Error as e:
            raise KVStoreError(f"get {key} failed: {e}") from e

    async def set(self, key: str, value: bytes) -> None:
        try:
            await asyncio.to_thread(self._set, key, value)
        except sqlite3.Error as e:
            raise KVStoreError(f"set {key} failed: {e}") from e

    async def remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove, key)
        except sqlite3.Error as e:
            raise KVStoreError(f"remove {key} failed: {e}") from e
