"""Tests for the location update cooldown."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from dealsync.core.clock import ManualClock
from dealsync.core.locks import KeyedLock
from dealsync.core.ratelimit import LocationRateLimiter
from dealsync.core.types import RefusalReason


@pytest.fixture
def clock() -> ManualClock:
    """Create a manual clock."""
    return ManualClock()


@pytest.fixture
def limiter(clock: ManualClock) -> LocationRateLimiter:
    """Create a limiter with the default one-hour cooldown."""
    return LocationRateLimiter(cooldown_minutes=60, clock=clock)


class TestLocationRateLimiter:
    """Tests for LocationRateLimiter."""

    def test_first_update_accepted(self, limiter: LocationRateLimiter, clock: ManualClock) -> None:
        """A vendor with no prior update should be accepted."""
        decision = limiter.attempt("v1", lambda now: now)
        assert decision.allowed
        assert decision.wait_minutes == 0
        assert decision.value == clock.now()
        assert limiter.last_update("v1") == clock.now()

    def test_rejected_at_59_minutes(self, limiter: LocationRateLimiter, clock: ManualClock) -> None:
        """59 minutes after an accepted update the wait should round up to 1."""
        limiter.attempt("v1", lambda now: None)
        clock.advance(minutes=59)
        decision = limiter.attempt("v1", lambda now: pytest.fail("must not mutate"))
        assert not decision.allowed
        assert decision.wait_minutes == 1
        assert decision.reason is RefusalReason.RATE_LIMITED

    def test_accepted_at_exactly_60_minutes(
        self, limiter: LocationRateLimiter, clock: ManualClock
    ) -> None:
        """The cooldown boundary itself should be eligible."""
        limiter.attempt("v1", lambda now: None)
        clock.advance(minutes=60)
        assert limiter.attempt("v1", lambda now: None).allowed

    def test_partial_minute_rounds_up(
        self, limiter: LocationRateLimiter, clock: ManualClock
    ) -> None:
        """Any remaining fraction of a minute counts as a whole minute."""
        limiter.attempt("v1", lambda now: None)
        clock.advance(minutes=10, seconds=1)
        assert limiter.check("v1").wait_minutes == 50

    def test_scenario_0_30_61(self, limiter: LocationRateLimiter, clock: ManualClock) -> None:
        """Accept at t=0, reject with 30 minutes at t=30, accept at t=61."""
        start = clock.now()
        assert limiter.attempt("v1", lambda now: None).allowed
        assert limiter.last_update("v1") == start

        clock.advance(minutes=30)
        rejected = limiter.attempt("v1", lambda now: None)
        assert not rejected.allowed
        assert rejected.wait_minutes == 30
        assert limiter.last_update("v1") == start

        clock.advance(minutes=31)
        assert limiter.attempt("v1", lambda now: None).allowed
        assert limiter.last_update("v1") == start + timedelta(minutes=61)

    def test_vendors_are_isolated(self, limiter: LocationRateLimiter, clock: ManualClock) -> None:
        """One vendor's cooldown should not affect another."""
        assert limiter.attempt("v1", lambda now: None).allowed
        assert limiter.attempt("v2", lambda now: None).allowed
        clock.advance(minutes=5)
        assert not limiter.attempt("v1", lambda now: None).allowed
        assert not limiter.check("v2").allowed
        assert limiter.check("v3").allowed

    def test_failed_mutation_records_nothing(self, limiter: LocationRateLimiter) -> None:
        """A mutation that raises should not start a cooldown."""

        def boom(now: datetime) -> None:
            raise RuntimeError("write failed")

        with pytest.raises(RuntimeError):
            limiter.attempt("v1", boom)
        assert limiter.last_update("v1") is None
        assert limiter.check("v1").allowed

    def test_record_and_forget(self, limiter: LocationRateLimiter, clock: ManualClock) -> None:
        """record() seeds a cooldown, forget() clears it."""
        limiter.record("v1", clock.now() - timedelta(minutes=45))
        assert limiter.check("v1").wait_minutes == 15
        assert limiter.next_allowed_at("v1") == clock.now() + timedelta(minutes=15)

        limiter.forget("v1")
        assert limiter.check("v1").allowed
        assert len(limiter) == 0

    def test_concurrent_same_vendor_single_acceptance(self, clock: ManualClock) -> None:
        """Concurrent attempts for one vendor should accept exactly one."""
        limiter = LocationRateLimiter(cooldown_minutes=60, clock=clock)
        barrier = threading.Barrier(8)
        mutations: list[int] = []

        def attempt(i: int) -> bool:
            barrier.wait()
            return limiter.attempt("v1", lambda now: mutations.append(i)).allowed

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))

        assert results.count(True) == 1
        assert len(mutations) == 1


class TestKeyedLock:
    """Tests for KeyedLock."""

    def test_releases_unused_keys(self) -> None:
        """Locks should be dropped once nobody holds them."""
        locks = KeyedLock()
        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_serializes_same_key(self) -> None:
        """Critical sections on one key should never overlap."""
        locks = KeyedLock()
        inside = 0
        overlaps = 0
        guard = threading.Lock()

        def work() -> None:
            nonlocal inside, overlaps
            with locks.hold("deal"):
                with guard:
                    inside += 1
                    if inside > 1:
                        overlaps += 1
                with guard:
                    inside -= 1

        threads = [threading.Thread(target=work) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlaps == 0
