"""FastAPI application for the dealsync server.

This module creates and configures the FastAPI application with:
- REST API for vendor listings, flash deals, favorites and reviews
- Per-owner location cooldown and per-deal redemption locks
- Daily purge of long-expired flash deals

Usage:
    uvicorn dealsync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from dealsync import __version__
from dealsync.core.clock import Clock, SystemClock
from dealsync.core.config import DealSyncConfig
from dealsync.core.locks import KeyedLock
from dealsync.core.ratelimit import LocationRateLimiter
from dealsync.server.api.router import router as api_router
from dealsync.server.database import Database
from dealsync.server.scheduler import DEFAULT_RETENTION_DAYS, FlashDealPurgeScheduler

# Configuration from environment variables with defaults
DB_PATH = Path(os.environ.get("DEALSYNC_DB_PATH", "dealsync.db"))
LOG_PATH = Path(os.environ.get("DEALSYNC_LOG_PATH", "dealsync-server.log"))
FLASH_RETENTION_DAYS = int(
    os.environ.get("DEALSYNC_FLASH_RETENTION_DAYS", str(DEFAULT_RETENTION_DAYS))
)

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for dealsync
    root_logger = logging.getLogger("dealsync")
    root_logger.setLevel(logging.INFO)

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.addHandler(file_handler)


def create_app(
    db: Database,
    config: DealSyncConfig | None = None,
    clock: Clock | None = None,
    limiter: LocationRateLimiter | None = None,
    purge_scheduler: FlashDealPurgeScheduler | None = None,
) -> FastAPI:
    """Create FastAPI application with custom database and collaborators.

    Tests pass a ManualClock and an isolated database.

    Args:
        db: Database instance.
        config: Tunables (location cooldown).
        clock: Time source for cooldowns and deal expiry.
        limiter: Location rate limiter; built from config and clock if omitted.
        purge_scheduler: Started and stopped with the app, if given.

    Returns:
        Configured FastAPI application.
    """
    config = config or DealSyncConfig()
    clock = clock or SystemClock()
    limiter = limiter or LocationRateLimiter(config.location_cooldown_minutes, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        # Cooldowns survive restarts through the listings' timestamps
        seeded = 0
        for user_id, last_update in db.list_location_timestamps():
            if limiter.last_update(user_id) is None:
                limiter.record(user_id, last_update)
                seeded += 1

        logger.info("=" * 60)
        logger.info("DealSync Server Starting")
        logger.info("=" * 60)
        logger.info("  Database:  %s", db.path)
        logger.info("  Cooldown:  %d min", config.location_cooldown_minutes)
        logger.info("  Cooldowns: %d restored", seeded)
        logger.info("=" * 60)
        if purge_scheduler is not None:
            purge_scheduler.start()

        yield

        # Shutdown
        if purge_scheduler is not None:
            purge_scheduler.stop()
        logger.info("DealSync Server shutting down")

    application = FastAPI(
        title="DealSync Server",
        description="Street vendor deals with offline-first clients",
        version=__version__,
        lifespan=lifespan,
    )

    application.state.db = db
    application.state.config = config
    application.state.clock = clock
    application.state.limiter = limiter
    application.state.deal_locks = KeyedLock()

    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    setup_logging(LOG_PATH)
    db = Database(DB_PATH)
    return create_app(
        db=db,
        config=DealSyncConfig.from_env(),
        purge_scheduler=FlashDealPurgeScheduler(db, FLASH_RETENTION_DAYS),
    )
