"""Server database using SQLAlchemy with SQLite.

This module provides:
- Vendor listing storage
- Flash deal storage with conditional redemption
- Favorites and reviews
- Expired flash deal purge
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import DateTime, create_engine, delete, or_, select, update
from sqlalchemy.orm import Session

from dealsync.core.clock import ensure_utc
from dealsync.server.models import Base, Favorite, FlashDeal, Review, VendorListing

if TYPE_CHECKING:
    from sqlalchemy import Engine

M = TypeVar("M", bound=Base)

# Listing fields a PUT may change; location goes through set_listing_location
LISTING_DETAIL_FIELDS = frozenset(
    {"business_name", "description", "category", "address", "phone", "is_active"}
)


class Database:
    """SQLAlchemy database for server state.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Create engine with check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        Base.metadata.create_all(self._engine)

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    @staticmethod
    def _detach(session: Session, obj: M) -> M:
        """Expunge `obj` and restore UTC tzinfo that SQLite drops."""
        session.expunge(obj)
        for column in obj.__table__.columns:
            if isinstance(column.type, DateTime):
                value = getattr(obj, column.key)
                if value is not None:
                    setattr(obj, column.key, ensure_utc(value))
        return obj

    # === Vendor listings ===

    def create_listing(
        self,
        listing_id: str,
        user_id: str,
        now: datetime,
        **fields: Any,
    ) -> VendorListing:
        """Create a listing whose location timestamp is `now`.

        Raises:
            IntegrityError: If the user already has a listing.
        """
        with self._session() as session:
            listing = VendorListing(
                id=listing_id,
                user_id=user_id,
                last_location_update=now,
                created_at=now,
                updated_at=now,
                **fields,
            )
            session.add(listing)
            session.commit()
            session.refresh(listing)
            return self._detach(session, listing)

    def get_listing(self, listing_id: str) -> VendorListing | None:
        with self._session() as session:
            listing = session.get(VendorListing, listing_id)
            return self._detach(session, listing) if listing else None

    def get_listing_by_user(self, user_id: str) -> VendorListing | None:
        with self._session() as session:
            listing = session.scalars(
                select(VendorListing).where(VendorListing.user_id == user_id)
            ).first()
            return self._detach(session, listing) if listing else None

    def list_active_listings(self) -> list[VendorListing]:
        with self._session() as session:
            listings = session.scalars(
                select(VendorListing)
                .where(VendorListing.is_active.is_(True))
                .order_by(VendorListing.business_name)
            ).all()
            return [self._detach(session, listing) for listing in listings]

    def list_location_timestamps(self) -> list[tuple[str, datetime]]:
        """(user_id, last_location_update) for every listing."""
        with self._session() as session:
            rows = session.execute(
                select(VendorListing.user_id, VendorListing.last_location_update)
            ).all()
            return [(user_id, ensure_utc(when)) for user_id, when in rows]

    def update_listing(
        self,
        listing_id: str,
        fields: dict[str, Any],
        now: datetime,
    ) -> VendorListing | None:
        """Update listing details. Location fields are ignored."""
        with self._session() as session:
            listing = session.get(VendorListing, listing_id)
            if listing is None:
                return None
            for key, value in fields.items():
                if key in LISTING_DETAIL_FIELDS:
                    setattr(listing, key, value)
            listing.updated_at = now
            session.commit()
            session.refresh(listing)
            return self._detach(session, listing)

    def set_listing_location(
        self,
        listing_id: str,
        location_lat: float,
        location_lng: float,
        city: str | None,
        state: str | None,
        now: datetime,
    ) -> VendorListing | None:
        with self._session() as session:
            listing = session.get(VendorListing, listing_id)
            if listing is None:
                return None
            listing.location_lat = location_lat
            listing.location_lng = location_lng
            if city:
                listing.city = city
            if state:
                listing.state = state
            listing.last_location_update = now
            listing.updated_at = now
            session.commit()
            session.refresh(listing)
            return self._detach(session, listing)

    def delete_listing(self, listing_id: str) -> bool:
        with self._session() as session:
            listing = session.get(VendorListing, listing_id)
            if listing is None:
                return False
            session.delete(listing)
            session.commit()
            return True

    # === Flash deals ===

    def create_flash_deal(
        self,
        deal_id: str,
        vendor_id: str,
        title: str,
        expires_at: datetime,
        now: datetime,
        **fields: Any,
    ) -> FlashDeal:
        with self._session() as session:
            deal = FlashDeal(
                id=deal_id,
                vendor_id=vendor_id,
                title=title,
                expires_at=expires_at,
                created_at=now,
                **fields,
            )
            session.add(deal)
            session.commit()
            session.refresh(deal)
            return self._detach(session, deal)

    def get_flash_deal(self, deal_id: str) -> FlashDeal | None:
        with self._session() as session:
            deal = session.get(FlashDeal, deal_id)
            return self._detach(session, deal) if deal else None

    def list_active_flash_deals(self, now: datetime) -> list[FlashDeal]:
        """Unexpired deals with capacity left, soonest expiry first."""
        with self._session() as session:
            deals = session.scalars(
                select(FlashDeal)
                .where(FlashDeal.expires_at > now)
                .where(
                    or_(
                        FlashDeal.max_redemptions.is_(None),
                        FlashDeal.current_redemptions < FlashDeal.max_redemptions,
                    )
                )
                .order_by(FlashDeal.expires_at)
            ).all()
            return [self._detach(session, deal) for deal in deals]

    def redeem_flash_deal(self, deal_id: str, now: datetime) -> FlashDeal | None:
        """Increment redemptions by one if the deal is active at `now`.

        The check and the increment are a single conditional UPDATE.

        Returns:
            The updated deal, or None if nothing was redeemed.
        """
        with self._session() as session:
            result = session.execute(
                update(FlashDeal)
                .where(FlashDeal.id == deal_id)
                .where(FlashDeal.expires_at > now)
                .where(
                    or_(
                        FlashDeal.max_redemptions.is_(None),
                        FlashDeal.current_redemptions < FlashDeal.max_redemptions,
                    )
                )
                .values(current_redemptions=FlashDeal.current_redemptions + 1)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            if result.rowcount == 0:
                return None
            deal = session.get(FlashDeal, deal_id)
            return self._detach(session, deal) if deal else None

    def purge_expired_flash_deals(self, cutoff: datetime) -> int:
        """Delete deals that expired before `cutoff`.

        Returns:
            Number of deals deleted.
        """
        with self._session() as session:
            result = session.execute(delete(FlashDeal).where(FlashDeal.expires_at < cutoff))
            session.commit()
            return result.rowcount or 0

    # === Favorites ===

    def upsert_favorite(self, user_id: str, vendor_id: str, notify_when_nearby: bool) -> Favorite:
        with self._session() as session:
            favorite = session.scalars(
                select(Favorite)
                .where(Favorite.user_id == user_id)
                .where(Favorite.vendor_id == vendor_id)
            ).first()
            if favorite is None:
                favorite = Favorite(user_id=user_id, vendor_id=vendor_id)
                session.add(favorite)
            favorite.notify_when_nearby = notify_when_nearby
            session.commit()
            session.refresh(favorite)
            return self._detach(session, favorite)

    def delete_favorite(self, user_id: str, vendor_id: str) -> bool:
        with self._session() as session:
            result = session.execute(
                delete(Favorite)
                .where(Favorite.user_id == user_id)
                .where(Favorite.vendor_id == vendor_id)
            )
            session.commit()
            return bool(result.rowcount)

    def list_favorites(self, user_id: str) -> list[Favorite]:
        with self._session() as session:
            favorites = session.scalars(
                select(Favorite).where(Favorite.user_id == user_id).order_by(Favorite.id)
            ).all()
            return [self._detach(session, f) for f in favorites]

    # === Reviews ===

    def create_review(self, user_id: str, vendor_id: str, rating: int, comment: str = "") -> Review:
        with self._session() as session:
            review = Review(user_id=user_id, vendor_id=vendor_id, rating=rating, comment=comment)
            session.add(review)
            session.commit()
            session.refresh(review)
            return self._detach(session, review)

    def list_reviews(self, vendor_id: str) -> list[Review]:
        with self._session() as session:
            reviews = session.scalars(
                select(Review).where(Review.vendor_id == vendor_id).order_by(Review.id)
            ).all()
            return [self._detach(session, r) for r in reviews]
