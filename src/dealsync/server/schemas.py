"""Pydantic schemas for API request/response models.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dealsync.core.flash_deals import FlashDeal as FlashDealPolicy
from dealsync.server.models import Favorite, FlashDeal, VendorListing


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === Health ===


class HealthResponse(CamelModel):
    """Health check response."""

    status: str


# === Vendor listing schemas ===


class ListingCreateRequest(CamelModel):
    """Request body for listing creation."""

    business_name: str = Field(min_length=1)
    category: str = Field(min_length=1)
    location_lat: float = Field(ge=-90, le=90)
    location_lng: float = Field(ge=-180, le=180)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    description: str | None = None
    address: str | None = None
    phone: str | None = None


class ListingUpdateRequest(CamelModel):
    """Request body for listing detail updates. Location is not accepted here."""

    business_name: str | None = None
    description: str | None = None
    category: str | None = None
    address: str | None = None
    phone: str | None = None
    is_active: bool | None = None


class LocationUpdateRequest(CamelModel):
    """Request body for a location update."""

    location_lat: float = Field(ge=-90, le=90)
    location_lng: float = Field(ge=-180, le=180)
    city: str | None = None
    state: str | None = None


class ListingResponse(CamelModel):
    """Vendor listing as seen by its owner."""

    id: str
    user_id: str
    business_name: str
    description: str | None
    category: str
    location_lat: float
    location_lng: float
    address: str | None
    city: str
    state: str
    phone: str | None
    vendor_tier: str
    is_active: bool
    last_location_update: str
    created_at: str
    updated_at: str


class PublicListingResponse(CamelModel):
    """Vendor listing fields visible to customers."""

    id: str
    business_name: str
    description: str | None
    category: str
    location_lat: float
    location_lng: float
    address: str | None
    city: str
    state: str
    phone: str | None


class TierLimits(CamelModel):
    """What the vendor's tier allows."""

    static_location_only: bool = True
    location_update_cooldown_minutes: int = 60
    no_real_time_tracking: bool = True
    no_promotions: bool = True
    no_priority_placement: bool = True


class ListingEnvelope(CamelModel):
    """Listing plus a human-readable message."""

    listing: ListingResponse
    message: str | None = None


class MyListingResponse(CamelModel):
    """The caller's listing with location-update status."""

    listing: ListingResponse
    can_update_location: bool
    location_update_wait_minutes: int
    tier_limits: TierLimits


class LocationUpdateResponse(CamelModel):
    """Accepted location update."""

    listing: ListingResponse
    message: str
    next_update_available: str


# === Flash deal schemas ===


class FlashDealCreateRequest(CamelModel):
    """Request body for flash deal creation."""

    title: str = Field(min_length=1)
    expires_at: str
    description: str | None = None
    category: str = ""
    original_price: float = Field(default=0.0, ge=0)
    deal_price: float = Field(default=0.0, ge=0)
    max_redemptions: int | None = Field(default=None, ge=1)


class FlashDealResponse(CamelModel):
    """Flash deal in responses."""

    id: str
    vendor_id: str
    title: str
    description: str | None
    category: str
    original_price: float
    deal_price: float
    max_redemptions: int | None
    current_redemptions: int
    expires_at: str
    created_at: str


# === Favorites and reviews ===


class FavoriteRequest(CamelModel):
    """Request body for a favorite upsert."""

    notify_when_nearby: bool = False


class FavoriteResponse(CamelModel):
    """Favorite in responses."""

    vendor_id: str
    notify_when_nearby: bool
    created_at: str


class ReviewRequest(CamelModel):
    """Request body for a review."""

    vendor_id: str
    rating: int = Field(ge=1, le=5)
    comment: str = ""


class ReviewResponse(CamelModel):
    """Review in responses."""

    id: int
    vendor_id: str
    rating: int
    comment: str
    created_at: str


# === Converters ===


def listing_to_response(listing: VendorListing) -> ListingResponse:
    """Convert VendorListing to response model."""
    return ListingResponse(
        id=listing.id,
        user_id=listing.user_id,
        business_name=listing.business_name,
        description=listing.description,
        category=listing.category,
        location_lat=listing.location_lat,
        location_lng=listing.location_lng,
        address=listing.address,
        city=listing.city,
        state=listing.state,
        phone=listing.phone,
        vendor_tier=listing.vendor_tier,
        is_active=listing.is_active,
        last_location_update=listing.last_location_update.isoformat(),
        created_at=listing.created_at.isoformat(),
        updated_at=listing.updated_at.isoformat(),
    )


def listing_to_public(listing: VendorListing) -> PublicListingResponse:
    """Convert VendorListing to its public projection."""
    return PublicListingResponse(
        id=listing.id,
        business_name=listing.business_name,
        description=listing.description,
        category=listing.category,
        location_lat=listing.location_lat,
        location_lng=listing.location_lng,
        address=listing.address,
        city=listing.city,
        state=listing.state,
        phone=listing.phone,
    )


def flash_deal_to_response(deal: FlashDeal) -> FlashDealResponse:
    """Convert FlashDeal to response model."""
    return FlashDealResponse(
        id=deal.id,
        vendor_id=deal.vendor_id,
        title=deal.title,
        description=deal.description,
        category=deal.category,
        original_price=deal.original_price,
        deal_price=deal.deal_price,
        max_redemptions=deal.max_redemptions,
        current_redemptions=deal.current_redemptions,
        expires_at=deal.expires_at.isoformat(),
        created_at=deal.created_at.isoformat(),
    )


def flash_deal_to_policy(deal: FlashDeal) -> FlashDealPolicy:
    """Convert the FlashDeal row to the redemption policy object."""
    return FlashDealPolicy(
        id=deal.id,
        vendor_id=deal.vendor_id,
        title=deal.title,
        expires_at=deal.expires_at,
        category=deal.category,
        original_price=deal.original_price,
        deal_price=deal.deal_price,
        max_redemptions=deal.max_redemptions,
        current_redemptions=deal.current_redemptions,
    )


def favorite_to_response(favorite: Favorite) -> FavoriteResponse:
    """Convert Favorite to response model."""
    return FavoriteResponse(
        vendor_id=favorite.vendor_id,
        notify_when_nearby=favorite.notify_when_nearby,
        created_at=favorite.created_at.isoformat(),
    )
