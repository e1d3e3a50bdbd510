"""Periodic and one-shot client ticks.

TickScheduler wraps an APScheduler BackgroundScheduler. Coroutine
functions are submitted to the client's event loop so ticks can drive
async services (health probe, location updates) from the scheduler thread.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

logger = logging.getLogger(__name__)


class TickScheduler:
    """Runs callables every N seconds or once at a given time."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize the scheduler.

        Args:
            loop: Event loop that receives coroutine ticks. Required only
                when scheduling coroutine functions.
        """
        self._loop = loop
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def _wrap(self, func: Callable[[], Any], job_id: str) -> Callable[[], None]:
        def run() -> None:
            try:
                if inspect.iscoroutinefunction(func):
                    if self._loop is None:
                        raise RuntimeError(f"Job {job_id} is a coroutine but no loop was given")
                    asyncio.run_coroutine_threadsafe(func(), self._loop).result()
                else:
                    func()
            except Exception:
                logger.exception("Error in scheduled job %s", job_id)

        return run

    def _ensure(self) -> BackgroundScheduler:
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(timezone="UTC")
        return self._scheduler

    def every(self, seconds: float, func: Callable[[], Any], job_id: str) -> None:
        """Run `func` every `seconds` seconds (replaces a job with the same id)."""
        self._ensure().add_job(
            self._wrap(func, job_id),
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def at(self, run_date: datetime, func: Callable[[], Any], job_id: str) -> None:
        """Run `func` once at `run_date`."""
        self._ensure().add_job(
            self._wrap(func, job_id),
            trigger=DateTrigger(run_date=run_date),
            id=job_id,
            name=job_id,
            replace_existing=True,
        )

    def cancel(self, job_id: str) -> bool:
        if self._scheduler is None or self._scheduler.get_job(job_id) is None:
            return False
        self._scheduler.remove_job(job_id)
        return True

    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    def start(self) -> None:
        scheduler = self._ensure()
        if not scheduler.running:
            scheduler.start()
            logger.info("Tick scheduler started with %d jobs", len(scheduler.get_jobs()))

    def stop(self) -> None:
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Tick scheduler stopped")
