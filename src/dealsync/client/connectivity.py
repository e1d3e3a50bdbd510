"""Connectivity tracking.

This module provides:
- ConnectivityMonitor: Current online flag plus change notifications
- HealthProbe: Feeds a monitor by polling the server health endpoint

The monitor is platform-neutral: native network callbacks, browser
online/offline events or the HealthProbe all end up calling set_online().
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Protocol

from dealsync.client.retry import backoff_delays

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class HealthCheckable(Protocol):
    async def health_check(self) -> bool: ...


class ConnectivityMonitor:
    """Single source of truth for "is the device online"."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._lock = threading.Lock()
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """Register `listener` for transitions.

        Returns:
            A function that unsubscribes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Record the current state, notifying listeners on a transition."""
        with self._lock:
            if online == self._online:
                return
            self._online = online
            listeners = list(self._listeners)

        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in listeners:
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener failed")


class HealthProbe:
    """Poll the server until told to stop.

    While online the probe checks every `interval` seconds; while offline
    it backs off exponentially up to `max_interval`.
    """

    def __init__(
        self,
        client: HealthCheckable,
        monitor: ConnectivityMonitor,
        interval: float = 30.0,
        offline_initial: float = 5.0,
        max_interval: float = 60.0,
    ) -> None:
        self._client = client
        self._monitor = monitor
        self._interval = interval
        self._offline_initial = offline_initial
        self._max_interval = max_interval
        self._stop = asyncio.Event()

    async def probe_once(self) -> bool:
        """Check the server once and update the monitor."""
        try:
            healthy = await self._client.health_check()
        except Exception as e:
            logger.debug("Health check raised: %s", e)
            healthy = False
        self._monitor.set_online(healthy)
        return healthy

    async def run(self) -> None:
        """Probe until stop() is called."""
        self._stop.clear()
        delays = backoff_delays(self._offline_initial, self._max_interval)
        while not self._stop.is_set():
            if await self.probe_once():
                delays = backoff_delays(self._offline_initial, self._max_interval)
                delay = self._interval
            else:
                delay = next(delays)
                logger.debug("Server unreachable, next check in %.0fs", delay)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except TimeoutError:
                continue

    def stop(self) -> None:
        self._stop.set()
