"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from dealsync.core.clock import Clock
from dealsync.core.locks import KeyedLock
from dealsync.core.ratelimit import LocationRateLimiter
from dealsync.server.database import Database


def get_db(request: Request) -> Database:
    """Get database from app state."""
    db: Database = request.app.state.db
    return db


def get_clock(request: Request) -> Clock:
    """Get the time source from app state."""
    clock: Clock = request.app.state.clock
    return clock


def get_limiter(request: Request) -> LocationRateLimiter:
    """Get the location rate limiter from app state."""
    limiter: LocationRateLimiter = request.app.state.limiter
    return limiter


def get_deal_locks(request: Request) -> KeyedLock:
    """Get the per-deal redemption locks from app state."""
    locks: KeyedLock = request.app.state.deal_locks
    return locks


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity from the X-User-Id header."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User ID required",
        )
    return x_user_id
