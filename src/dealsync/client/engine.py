"""Sync engine coordinating the offline cache and pending action queue.

This module provides:
- SyncEngine: Decides when pending actions are drained
- SyncStatus: Snapshot for UI/diagnostics

Drain triggers:
1. start(): caches and queue are loaded, then drained once if online
2. offline -> online transition: drained exactly once
3. refresh(): explicit user request

A drain never starts while another one for the same queue is
outstanding. Going offline mid-drain aborts the in-flight call; it counts
as a failed attempt and successes already applied stay applied.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from dealsync.client.cache import CachedDeal, CachedVendor, LocalCache, SyncMarker
from dealsync.client.favorites import FavoritesStore
from dealsync.client.kvstore import CACHED_DEALS_KEY, CACHED_VENDORS_KEY, LAST_SYNC_KEY
from dealsync.client.queue import PendingAction, PendingActionQueue
from dealsync.client.retry import call_with_timeout
from dealsync.core.clock import SystemClock
from dealsync.core.config import DealSyncConfig
from dealsync.core.types import ActionType, SyncState

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from dealsync.client.connectivity import ConnectivityMonitor
    from dealsync.client.kvstore import KVStore
    from dealsync.core.clock import Clock

logger = logging.getLogger(__name__)


@dataclass
class SyncStatus:
    """Offline state summary."""

    state: SyncState
    is_online: bool
    pending_actions: int
    cached_deals: int
    cached_vendors: int
    last_sync_time: datetime | None
    cache_size: int

    @property
    def is_offline_mode(self) -> bool:
        return not self.is_online


class SyncEngine:
    """Coordinates the local cache, pending actions and connectivity.

    Usage:
        engine = SyncEngine(store, client.apply, monitor)
        await engine.start()
        await engine.favorite("v1")  # applied now, or queued if offline
        ...
        await engine.stop()
    """

    def __init__(
        self,
        store: KVStore,
        effector: Callable[[PendingAction], Awaitable[object]],
        monitor: ConnectivityMonitor,
        clock: Clock | None = None,
        config: DealSyncConfig | None = None,
    ) -> None:
        """Initialize the sync engine.

        Args:
            store: Durable key-value store.
            effector: Applies one pending action remotely; raising means
                transient failure.
            monitor: Connectivity source.
            clock: Time source (defaults to the system clock).
            config: Tunables.
        """
        self._config = config or DealSyncConfig()
        self._clock = clock or SystemClock()
        self._effector = effector
        self._monitor = monitor

        self.marker = SyncMarker(store, LAST_SYNC_KEY)
        self.deals: LocalCache[CachedDeal] = LocalCache(
            store,
            CACHED_DEALS_KEY,
            CachedDeal,
            capacity=self._config.max_cached_deals,
            ttl_hours=self._config.cache_ttl_hours,
            clock=self._clock,
            marker=self.marker,
        )
        self.vendors: LocalCache[CachedVendor] = LocalCache(
            store,
            CACHED_VENDORS_KEY,
            CachedVendor,
            capacity=self._config.max_cached_vendors,
            ttl_hours=self._config.cache_ttl_hours,
            clock=self._clock,
            marker=self.marker,
        )
        self.queue = PendingActionQueue(
            store,
            clock=self._clock,
            max_retries=self._config.max_retries,
            timeout=self._config.request_timeout,
        )
        self.favorites = FavoritesStore(store, self._config.default_alert_radius_miles)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._was_online = monitor.is_online
        # Replaced at the start of every drain
        self._abort = asyncio.Event()
        self._drain_task: asyncio.Task[None] | None = None
        self._drain_again = False
        self._state = SyncState.IDLE if monitor.is_online else SyncState.OFFLINE

    # === Lifecycle ===

    async def start(self) -> None:
        """Load persisted state and start following connectivity."""
        await asyncio.gather(
            self.deals.load(),
            self.vendors.load(),
            self.queue.load(),
            self.favorites.load(),
            self.marker.load(),
        )
        self._loop = asyncio.get_running_loop()
        self._was_online = self._monitor.is_online
        self._unsubscribe = self._monitor.subscribe(self._on_connectivity_change)
        logger.info(
            "Sync engine started: %d deals, %d vendors, %d pending actions",
            len(self.deals),
            len(self.vendors),
            len(self.queue),
        )
        if self._monitor.is_online and self.queue:
            self._schedule_drain()

    async def stop(self) -> None:
        """Stop following connectivity and wait for an outstanding drain."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait for the outstanding drain, if any."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.wait({self._drain_task})

    # === Connectivity ===

    def _on_connectivity_change(self, online: bool) -> None:
        was_online = self._was_online
        self._was_online = online
        if not online:
            self._state = SyncState.OFFLINE
            self._abort.set()
            return
        if not was_online:
            self._state = SyncState.IDLE
            self._schedule_drain()

    def _schedule_drain(self) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not loop:
            # Listener fired from a foreign thread
            loop.call_soon_threadsafe(self._schedule_drain)
            return
        if self._drain_task is not None and not self._drain_task.done():
            logger.debug("Drain already outstanding, draining again once it finishes")
            self._drain_again = True
            return
        self._drain_again = False
        self._drain_task = loop.create_task(self._drain_loop())

    async def _drain_loop(self) -> None:
        while True:
            self._drain_again = False
            await self.sync_pending()
            if not self._drain_again:
                return

    # === Draining ===

    async def sync_pending(self) -> list[PendingAction]:
        """Drain the queue once if online.

        Returns:
            The surviving queue.
        """
        if not self._monitor.is_online:
            self._state = SyncState.OFFLINE
            return self.queue.actions
        if self.queue.is_draining:
            return self.queue.actions

        abort = self._abort = asyncio.Event()
        self._state = SyncState.SYNCING
        try:
            remaining = await self.queue.drain(self._effector, abort=abort)
        except Exception:
            self._state = SyncState.ERROR
            logger.exception("Drain failed")
            return self.queue.actions
        self._state = SyncState.IDLE if self._monitor.is_online else SyncState.OFFLINE
        return remaining

    async def refresh(self) -> list[PendingAction]:
        """User-triggered sync; waits for an outstanding drain first."""
        await self.wait_idle()
        return await self.sync_pending()

    # === Cache ===

    async def cache_deals(self, deals: list[CachedDeal]) -> list[CachedDeal]:
        return await self.deals.merge(deals)

    async def cache_vendors(self, vendors: list[CachedVendor]) -> list[CachedVendor]:
        return await self.vendors.merge(vendors)

    async def clear_cache(self) -> None:
        await asyncio.gather(self.deals.clear(), self.vendors.clear())

    @property
    def last_sync_time(self) -> datetime | None:
        return self.marker.value

    # === Mutations ===

    async def record_action(
        self,
        action_type: ActionType | str,
        payload: dict[str, Any],
    ) -> PendingAction | None:
        """Apply a mutation remotely now, or queue it.

        The mutation is queued when offline, when earlier actions are still
        pending (keeps FIFO order), or when the immediate attempt fails.

        Returns:
            The queued action, or None if it was applied immediately.
        """
        if self._monitor.is_online and not self.queue:
            action = PendingAction.create(action_type, payload, created_at=self._clock.now())
            try:
                await call_with_timeout(self._effector(action), self._config.request_timeout)
                return None
            except Exception as e:
                logger.warning("Immediate %s failed, queueing: %s", action.type.value, e)
        return await self.queue.enqueue(action_type, payload)

    async def favorite(self, vendor_id: str, notify_when_nearby: bool = False) -> PendingAction | None:
        favorite = await self.favorites.add(vendor_id, notify_when_nearby)
        return await self.record_action(
            ActionType.FAVORITE,
            {"vendor_id": vendor_id, "notify_when_nearby": favorite.notify_when_nearby},
        )

    async def unfavorite(self, vendor_id: str) -> PendingAction | None:
        await self.favorites.remove(vendor_id)
        return await self.record_action(ActionType.FAVORITE, {"vendor_id": vendor_id, "remove": True})

    async def toggle_notify(self, vendor_id: str) -> PendingAction | None:
        favorite = await self.favorites.toggle_notify(vendor_id)
        if favorite is None:
            return None
        return await self.record_action(
            ActionType.FAVORITE,
            {"vendor_id": vendor_id, "notify_when_nearby": favorite.notify_when_nearby},
        )

    async def redeem(self, deal_id: str) -> PendingAction | None:
        return await self.record_action(ActionType.REDEEM, {"deal_id": deal_id})

    async def review(self, vendor_id: str, rating: int, comment: str = "") -> PendingAction | None:
        return await self.record_action(
            ActionType.REVIEW, {"vendor_id": vendor_id, "rating": rating, "comment": comment}
        )

    # === Status ===

    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            is_online=self._monitor.is_online,
            pending_actions=len(self.queue),
            cached_deals=len(self.deals),
            cached_vendors=len(self.vendors),
            last_sync_time=self.last_sync_time,
            cache_size=self.deals.size_bytes + self.vendors.size_bytes,
        )
