"""Shared types for dealsync.

This module defines types and enums used by both client and server.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class SyncState(str, Enum):
    """Sync state of a client session."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


class ActionType(str, Enum):
    """Mutations a user can perform while offline."""

    FAVORITE = "favorite"
    REDEEM = "redeem"
    REVIEW = "review"


class RefusalReason(str, Enum):
    """Machine-readable reason for a policy rejection.

    Policy rejections are never retried.
    """

    RATE_LIMITED = "rate_limited"
    CAPACITY_EXHAUSTED = "capacity_exhausted"
    DEAL_EXPIRED = "deal_expired"
    NOT_FOUND = "not_found"


@dataclass
class RateDecision(Generic[T]):
    """Outcome of a cooldown-gated operation.

    Attributes:
        allowed: True if the operation was effected.
        wait_minutes: Minutes until the key becomes eligible again (0 if allowed).
        value: Whatever the gated mutation returned, when allowed.
    """

    allowed: bool
    wait_minutes: int = 0
    value: T | None = None

    @property
    def reason(self) -> RefusalReason | None:
        return None if self.allowed else RefusalReason.RATE_LIMITED


@dataclass
class RedemptionResult(Generic[T]):
    """Outcome of a flash-deal redemption attempt."""

    success: bool
    reason: RefusalReason | None = None
    deal: T | None = None
