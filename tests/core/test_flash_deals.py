"""Tests for flash deal policy and geo helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from dealsync.core.flash_deals import FlashDeal, refusal_reason
from dealsync.core.geo import haversine_miles
from dealsync.core.types import RefusalReason

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def make_deal(**overrides: object) -> FlashDeal:
    values: dict[str, object] = {
        "id": "fd1",
        "vendor_id": "v1",
        "title": "Half-price tacos",
        "expires_at": NOW + timedelta(hours=1),
        "original_price": 10.0,
        "deal_price": 5.0,
    }
    values.update(overrides)
    return FlashDeal(**values)  # type: ignore[arg-type]


class TestRefusalReason:
    """Tests for refusal_reason()."""

    def test_active_deal(self) -> None:
        """An unexpired deal with capacity should be redeemable."""
        deal = make_deal(max_redemptions=2, current_redemptions=1)
        assert refusal_reason(deal, NOW) is None
        assert deal.is_active(NOW)
        assert deal.remaining == 1

    def test_expired_at_boundary(self) -> None:
        """A deal is expired once now reaches expires_at."""
        deal = make_deal(expires_at=NOW)
        assert refusal_reason(deal, NOW) is RefusalReason.DEAL_EXPIRED

    def test_capacity_exhausted(self) -> None:
        """A full deal should be refused."""
        deal = make_deal(max_redemptions=1, current_redemptions=1)
        assert refusal_reason(deal, NOW) is RefusalReason.CAPACITY_EXHAUSTED

    def test_unlimited(self) -> None:
        """Deals without a ceiling never run out."""
        deal = make_deal(current_redemptions=10_000)
        assert refusal_reason(deal, NOW) is None
        assert deal.remaining is None


class TestFlashDeal:
    """Tests for FlashDeal helpers."""

    def test_discount(self) -> None:
        """Should compute the discount percentage."""
        deal = make_deal()
        assert deal.discount_percent == 50.0
        assert deal.has_real_discount

    @pytest.mark.parametrize(("original", "price"), [(10.0, 10.0), (10.0, 12.0), (0.0, 0.0)])
    def test_degenerate_discount(self, original: float, price: float) -> None:
        """A price that is not lower than the original is not a discount."""
        assert not make_deal(original_price=original, deal_price=price).has_real_discount

    def test_dict_round_trip(self) -> None:
        """Should survive serialization with tz-aware expiry."""
        deal = make_deal(max_redemptions=3, category="food")
        assert FlashDeal.from_dict(deal.to_dict()) == deal


class TestHaversine:
    """Tests for haversine_miles()."""

    def test_same_point(self) -> None:
        """Distance to self should be zero."""
        assert haversine_miles(40.0, -74.0, 40.0, -74.0) == 0.0

    def test_known_distance(self) -> None:
        """New York to Los Angeles is roughly 2445 miles."""
        distance = haversine_miles(40.7128, -74.0060, 34.0522, -118.2437)
        assert distance == pytest.approx(2445, rel=0.01)

    def test_short_distance(self) -> None:
        """0.01 degrees of latitude is about 0.69 miles."""
        assert haversine_miles(40.0, -74.0, 40.01, -74.0) == pytest.approx(0.691, abs=0.01)
