"""Core module - Shared policies, clock, and configuration."""

from dealsync.core.clock import Clock, ManualClock, SystemClock, ensure_utc
from dealsync.core.config import DealSyncConfig, ServerConfig
from dealsync.core.flash_deals import FlashDeal, refusal_reason
from dealsync.core.geo import EARTH_RADIUS_MILES, haversine_miles
from dealsync.core.locks import KeyedLock
from dealsync.core.ratelimit import LocationRateLimiter
from dealsync.core.types import (
    ActionType,
    RateDecision,
    RedemptionResult,
    RefusalReason,
    SyncState,
)

__all__ = [
    # Clock
    "Clock",
    "ManualClock",
    "SystemClock",
    "ensure_utc",
    # Config
    "DealSyncConfig",
    "ServerConfig",
    # Policies
    "FlashDeal",
    "KeyedLock",
    "LocationRateLimiter",
    "refusal_reason",
    # Geo
    "EARTH_RADIUS_MILES",
    "haversine_miles",
    # Types
    "ActionType",
    "RateDecision",
    "RedemptionResult",
    "RefusalReason",
    "SyncState",
]
