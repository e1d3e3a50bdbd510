"""Tests for server database operations."""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from dealsync.server.database import Database

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

LISTING_FIELDS = {
    "business_name": "Taco Truck",
    "category": "food",
    "location_lat": 40.7128,
    "location_lng": -74.006,
    "city": "New York",
    "state": "NY",
}


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


class TestListingOperations:
    """Tests for vendor listing operations."""

    def test_create_and_get(self, db: Database) -> None:
        """Should store a listing and return it with UTC timestamps."""
        db.create_listing("vl_1", "u1", NOW, **LISTING_FIELDS)

        listing = db.get_listing("vl_1")
        assert listing is not None
        assert listing.business_name == "Taco Truck"
        assert listing.vendor_tier == "free"
        assert listing.is_active
        assert listing.last_location_update == NOW
        assert listing.last_location_update.tzinfo is not None

        by_user = db.get_listing_by_user("u1")
        assert by_user is not None
        assert by_user.id == "vl_1"

    def test_one_listing_per_user(self, db: Database) -> None:
        """A second listing for the same user should violate the constraint."""
        db.create_listing("vl_1", "u1", NOW, **LISTING_FIELDS)
        with pytest.raises(IntegrityError):
            db.create_listing("vl_2", "u1", NOW, **LISTING_FIELDS)

    def test_update_ignores_location(self, db: Database) -> None:
        """update_listing() should only touch detail fields."""
        db.create_listing("vl_1", "u1", NOW, **LISTING_FIELDS)
        later = NOW + timedelta(minutes=5)
        listing = db.update_listing("vl_1", {"phone": "555", "location_lat": 0.0}, later)

        assert listing is not None
        assert listing.phone == "555"
        assert listing.location_lat == 40.7128
        assert listing.updated_at == later
        assert listing.last_location_update == NOW
        assert db.update_listing("missing", {}, later) is None

    def test_set_location(self, db: Database) -> None:
        """set_listing_location() should move the listing and stamp the time."""
        db.create_listing("vl_1", "u1", NOW, **LISTING_FIELDS)
        later = NOW + timedelta(hours=2)
        listing = db.set_listing_location("vl_1", 40.73, -73.99, "Brooklyn", None, later)

        assert listing is not None
        assert (listing.location_lat, listing.location_lng) == (40.73, -73.99)
        assert listing.city == "Brooklyn"
        assert listing.state == "NY"
        assert listing.last_location_update == later
        assert db.list_location_timestamps() == [("u1", later)]

    def test_active_listings_and_delete(self, db: Database) -> None:
        """Inactive listings should be hidden; deleted ones gone."""
        db.create_listing("vl_1", "u1", NOW, **LISTING_FIELDS)
        db.create_listing("vl_2", "u2", NOW, **{**LISTING_FIELDS, "business_name": "Arepa Cart"})
        db.update_listing("vl_1", {"is_active": False}, NOW)

        assert [listing.id for listing in db.list_active_listings()] == ["vl_2"]
        assert db.delete_listing("vl_2")
        assert not db.delete_listing("vl_2")
        assert db.get_listing("vl_2") is None


class TestFlashDealOperations:
    """Tests for flash deal operations."""

    def test_redeem_increments(self, db: Database) -> None:
        """Redemption should increment until capacity is reached."""
        db.create_flash_deal("fd1", "vl_1", "Tacos", NOW + timedelta(hours=1), NOW, max_redemptions=2)

        first = db.redeem_flash_deal("fd1", NOW)
        second = db.redeem_flash_deal("fd1", NOW)
        assert first is not None and first.current_redemptions == 1
        assert second is not None and second.current_redemptions == 2
        assert db.redeem_flash_deal("fd1", NOW) is None

        stored = db.get_flash_deal("fd1")
        assert stored is not None
        assert stored.current_redemptions == 2

    def test_redeem_unlimited(self, db: Database) -> None:
        """Deals without a cap should always redeem while unexpired."""
        db.create_flash_deal("fd1", "vl_1", "Tacos", NOW + timedelta(hours=1), NOW)
        for expected in range(1, 6):
            deal = db.redeem_flash_deal("fd1", NOW)
            assert deal is not None
            assert deal.current_redemptions == expected

    def test_redeem_expired(self, db: Database) -> None:
        """An expired deal should not be redeemed."""
        expires = NOW + timedelta(minutes=1)
        db.create_flash_deal("fd1", "vl_1", "Tacos", expires, NOW)
        assert db.redeem_flash_deal("fd1", expires) is None
        assert db.redeem_flash_deal("missing", NOW) is None

    def test_list_active(self, db: Database) -> None:
        """Only unexpired deals with capacity should be listed, soonest first."""
        db.create_flash_deal("late", "vl_1", "Late", NOW + timedelta(hours=2), NOW)
        db.create_flash_deal("soon", "vl_1", "Soon", NOW + timedelta(hours=1), NOW)
        db.create_flash_deal("gone", "vl_1", "Gone", NOW - timedelta(minutes=1), NOW)
        db.create_flash_deal(
            "full", "vl_1", "Full", NOW + timedelta(hours=1), NOW, max_redemptions=1
        )
        db.redeem_flash_deal("full", NOW)

        assert [d.id for d in db.list_active_flash_deals(NOW)] == ["soon", "late"]

    def test_purge(self, db: Database) -> None:
        """Purge should delete deals that expired before the cutoff."""
        db.create_flash_deal("old", "vl_1", "Old", NOW - timedelta(days=10), NOW)
        db.create_flash_deal("recent", "vl_1", "Recent", NOW - timedelta(days=1), NOW)

        assert db.purge_expired_flash_deals(NOW - timedelta(days=7)) == 1
        assert db.get_flash_deal("old") is None
        assert db.get_flash_deal("recent") is not None


class TestFavoriteOperations:
    """Tests for favorites and reviews."""

    def test_upsert_favorite(self, db: Database) -> None:
        """Upserting twice should update, not duplicate."""
        db.upsert_favorite("u1", "v1", True)
        favorite = db.upsert_favorite("u1", "v1", False)
        assert not favorite.notify_when_nearby
        assert len(db.list_favorites("u1")) == 1

    def test_delete_favorite(self, db: Database) -> None:
        """Deleting should report whether a row was removed."""
        db.upsert_favorite("u1", "v1", False)
        assert db.delete_favorite("u1", "v1")
        assert not db.delete_favorite("u1", "v1")

    def test_reviews(self, db: Database) -> None:
        """Reviews should be listed per vendor in insertion order."""
        db.create_review("u1", "v1", 5, "great")
        db.create_review("u2", "v1", 3)
        db.create_review("u1", "v2", 1)
        assert [r.rating for r in db.list_reviews("v1")] == [5, 3]
