"""Tests for the client tick scheduler."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

from dealsync.client.scheduler import TickScheduler


class TestTickScheduler:
    """Tests for TickScheduler."""

    def test_initial_state(self) -> None:
        """A new scheduler should not be running and have no jobs."""
        ticks = TickScheduler()
        assert not ticks.running
        assert ticks.job_ids() == []

    def test_start_stop(self) -> None:
        """start() and stop() should toggle running."""
        ticks = TickScheduler()
        ticks.start()
        try:
            assert ticks.running
        finally:
            ticks.stop()
        assert not ticks.running

    def test_every_runs_job(self) -> None:
        """An interval job should fire."""
        fired = threading.Event()
        ticks = TickScheduler()
        ticks.every(0.05, fired.set, "probe")
        ticks.start()
        try:
            assert ticks.job_ids() == ["probe"]
            assert fired.wait(timeout=5)
        finally:
            ticks.stop()

    def test_replace_and_cancel(self) -> None:
        """Reusing an id should replace the job; cancel() should remove it."""
        ticks = TickScheduler()
        later = datetime.now(UTC) + timedelta(days=1)
        ticks.start()
        try:
            ticks.at(later, lambda: None, "reminder")
            ticks.at(later, lambda: None, "reminder")
            assert ticks.job_ids() == ["reminder"]
            assert ticks.cancel("reminder")
            assert not ticks.cancel("reminder")
            assert ticks.job_ids() == []
        finally:
            ticks.stop()

    def test_job_errors_are_contained(self) -> None:
        """A failing job should not stop later runs."""
        calls: list[int] = []
        done = threading.Event()

        def flaky() -> None:
            calls.append(1)
            if len(calls) >= 2:
                done.set()
            raise RuntimeError("tick failed")

        ticks = TickScheduler()
        ticks.every(0.05, flaky, "flaky")
        ticks.start()
        try:
            assert done.wait(timeout=5)
        finally:
            ticks.stop()
