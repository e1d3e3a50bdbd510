"""Location update cooldown.

This module provides:
- LocationRateLimiter: per-vendor gate allowing one accepted location
  update per cooldown window

The same policy runs on the server (authoritative) and on the client as an
optimistic fallback while the server is unreachable. The two instances
keep independent clocks.

States per key:
    ELIGIBLE     no accepted update yet, or cooldown elapsed
    COOLING_DOWN accepted update less than `cooldown` ago

An accepted attempt moves the key straight back into COOLING_DOWN.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

from dealsync.core.clock import SystemClock, ensure_utc
from dealsync.core.locks import KeyedLock
from dealsync.core.types import RateDecision

if TYPE_CHECKING:
    from collections.abc import Callable

    from dealsync.core.clock import Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_COOLDOWN_MINUTES = 60


class LocationRateLimiter:
    """Single-writer-per-key cooldown gate.

    Usage:
        limiter = LocationRateLimiter(cooldown_minutes=60)
        decision = limiter.attempt(user_id, lambda now: apply_location(now))
        if not decision.allowed:
            print(f"wait {decision.wait_minutes} minutes")
    """

    def __init__(
        self,
        cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES,
        clock: Clock | None = None,
    ) -> None:
        self._cooldown = timedelta(minutes=cooldown_minutes)
        self._clock = clock or SystemClock()
        self._timestamps: dict[str, datetime] = {}
        self._map_lock = threading.Lock()
        self._keys = KeyedLock()

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    def last_update(self, key: str) -> datetime | None:
        with self._map_lock:
            return self._timestamps.get(key)

    def _wait_minutes(self, key: str, now: datetime) -> int:
        last = self.last_update(key)
        if last is None:
            return 0
        elapsed = now - last
        if elapsed >= self._cooldown:
            return 0
        remaining_ms = (self._cooldown - elapsed) / timedelta(milliseconds=1)
        return math.ceil(remaining_ms / 60000)

    def check(self, key: str) -> RateDecision[None]:
        """Report eligibility without changing state."""
        wait = self._wait_minutes(key, self._clock.now())
        return RateDecision(allowed=wait == 0, wait_minutes=wait)

    def next_allowed_at(self, key: str) -> datetime | None:
        last = self.last_update(key)
        return None if last is None else last + self._cooldown

    def attempt(self, key: str, mutate: Callable[[datetime], T]) -> RateDecision[T]:
        """Run `mutate` if `key` is eligible, then start a new cooldown.

        The eligibility check, the mutation and the timestamp write happen
        inside the key's critical section. If `mutate` raises, no
        timestamp is recorded and the exception propagates.

        Args:
            key: Vendor (owner) identifier.
            mutate: Called with the acceptance time; its result is returned
                as `RateDecision.value`.

        Returns:
            Accepted decision carrying the mutation's value, or a rejected
            decision carrying the remaining wait in minutes.
        """
        with self._keys.hold(key):
            now = self._clock.now()
            wait = self._wait_minutes(key, now)
            if wait > 0:
                logger.info("Location update for %s rejected, wait %d min", key, wait)
                return RateDecision(allowed=False, wait_minutes=wait)

            value = mutate(now)
            with self._map_lock:
                self._timestamps[key] = now
            return RateDecision(allowed=True, value=value)

    def record(self, key: str, when: datetime | None = None) -> None:
        """Start a cooldown for `key` at `when` (default: now)."""
        with self._keys.hold(key), self._map_lock:
            self._timestamps[key] = ensure_utc(when) if when else self._clock.now()

    def forget(self, key: str) -> None:
        """Drop the timestamp for `key` (listing deleted)."""
        with self._keys.hold(key), self._map_lock:
            self._timestamps.pop(key, None)

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._timestamps)
