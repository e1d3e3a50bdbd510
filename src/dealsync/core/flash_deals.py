"""Flash deal redemption policy.

A flash deal is active while it has not expired and still has capacity.
Redemptions only ever go up, and never past `max_redemptions`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from dealsync.core.clock import ensure_utc
from dealsync.core.types import RefusalReason


@dataclass
class FlashDeal:
    """A time-boxed, optionally capacity-limited deal."""

    id: str
    vendor_id: str
    title: str
    expires_at: datetime
    category: str = ""
    original_price: float = 0.0
    deal_price: float = 0.0
    max_redemptions: int | None = None
    current_redemptions: int = 0

    @property
    def discount_percent(self) -> float:
        if self.original_price <= 0:
            return 0.0
        return round((1 - self.deal_price / self.original_price) * 100, 1)

    @property
    def has_real_discount(self) -> bool:
        """True when the deal price is a genuine reduction."""
        return 0 <= self.deal_price < self.original_price

    @property
    def remaining(self) -> int | None:
        if self.max_redemptions is None:
            return None
        return max(0, self.max_redemptions - self.current_redemptions)

    def is_active(self, now: datetime) -> bool:
        return refusal_reason(self, now) is None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlashDeal:
        return cls(
            id=data["id"],
            vendor_id=data["vendor_id"],
            title=data["title"],
            expires_at=ensure_utc(datetime.fromisoformat(data["expires_at"])),
            category=data.get("category", ""),
            original_price=data.get("original_price", 0.0),
            deal_price=data.get("deal_price", 0.0),
            max_redemptions=data.get("max_redemptions"),
            current_redemptions=data.get("current_redemptions", 0),
        )


def refusal_reason(deal: FlashDeal, now: datetime) -> RefusalReason | None:
    """Why `deal` cannot be redeemed at `now`, or None if it can."""
    if ensure_utc(deal.expires_at) <= now:
        return RefusalReason.DEAL_EXPIRED
    if deal.max_redemptions is not None and deal.current_redemptions >= deal.max_redemptions:
        return RefusalReason.CAPACITY_EXHAUSTED
    return None
