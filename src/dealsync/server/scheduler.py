"""Scheduler for automatic maintenance tasks.

This module provides:
- Automatic daily purge of long-expired flash deals at 3:00 AM
- Manual purge function for CLI usage
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from dealsync.server.database import Database

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7


def purge_expired_flash_deals(
    db: Database,
    older_than_days: int = DEFAULT_RETENTION_DAYS,
    now: datetime | None = None,
) -> int:
    """Delete flash deals that expired more than `older_than_days` ago.

    Args:
        db: Database instance.
        older_than_days: Retention period after expiry.
        now: Reference time (defaults to the current UTC time).

    Returns:
        Number of deals deleted.
    """
    cutoff = (now or datetime.now(UTC)) - timedelta(days=older_than_days)
    deleted = db.purge_expired_flash_deals(cutoff)
    if deleted > 0:
        logger.info("Flash deal purge completed: %d deals deleted", deleted)
    else:
        logger.debug("Flash deal purge: no deals expired before %s", cutoff.isoformat())
    return deleted


class FlashDealPurgeScheduler:
    """Runs the expired flash deal purge daily."""

    def __init__(
        self,
        db: Database,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        hour: int = 3,
        minute: int = 0,
    ) -> None:
        """Initialize the scheduler.

        Args:
            db: Database instance.
            retention_days: Days to keep deals after they expire.
            hour: Hour to run the purge job (0-23).
            minute: Minute to run the purge job (0-59).
        """
        self._db = db
        self._retention_days = retention_days
        self._hour = hour
        self._minute = minute
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def _purge_job(self) -> None:
        """Job function for scheduled flash deal purge."""
        logger.info("Starting scheduled flash deal purge (retention: %d days)", self._retention_days)
        try:
            purge_expired_flash_deals(self._db, self._retention_days)
        except Exception:
            logger.exception("Error during scheduled flash deal purge")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._purge_job,
            trigger=CronTrigger(hour=self._hour, minute=self._minute),
            id="flash_deal_purge",
            name="Daily flash deal purge",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Flash deal purge scheduler started (daily at %02d:%02d, retention: %d days)",
            self._hour,
            self._minute,
            self._retention_days,
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Flash deal purge scheduler stopped")

    def run_now(self) -> int:
        """Run the purge immediately (manual trigger).

        Returns:
            Number of deals deleted.
        """
        return purge_expired_flash_deals(self._db, self._retention_days)
