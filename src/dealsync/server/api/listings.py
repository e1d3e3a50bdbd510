"""Vendor listing API routes.

Each owner has at most one listing. Location changes are limited to one
accepted update per cooldown window per owner; rejected updates get a 429
with the remaining wait in minutes and leave the listing untouched.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse

from dealsync.core.clock import Clock
from dealsync.core.ratelimit import LocationRateLimiter
from dealsync.core.types import RefusalReason
from dealsync.server.api.deps import get_clock, get_db, get_limiter, get_user_id
from dealsync.server.database import Database
from dealsync.server.models import VendorListing
from dealsync.server.schemas import (
    ListingCreateRequest,
    ListingEnvelope,
    ListingUpdateRequest,
    LocationUpdateRequest,
    LocationUpdateResponse,
    MyListingResponse,
    PublicListingResponse,
    TierLimits,
    listing_to_public,
    listing_to_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vendors", tags=["vendors"])


def _owned_listing(db: Database, listing_id: str, user_id: str) -> VendorListing:
    listing = db.get_listing(listing_id)
    if listing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Listing not found",
        )
    if listing.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to modify this listing",
        )
    return listing


@router.post(
    "/listing",
    response_model=ListingEnvelope,
    status_code=status.HTTP_201_CREATED,
)
def create_listing(
    request: ListingCreateRequest,
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
    limiter: LocationRateLimiter = Depends(get_limiter),
    clock: Clock = Depends(get_clock),
) -> ListingEnvelope:
    """Create the caller's listing. Starts the location cooldown."""
    if db.get_listing_by_user(user_id) is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You already have a vendor listing. Use update instead.",
        )

    now = clock.now()
    listing_id = f"vl_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}"
    try:
        listing = db.create_listing(listing_id, user_id, now, **request.model_dump())
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You already have a vendor listing. Use update instead.",
        ) from e

    limiter.record(user_id, now)
    logger.info("Listing %s created for %s", listing.id, user_id)
    return ListingEnvelope(
        listing=listing_to_response(listing),
        message="Vendor listing created successfully",
    )


@router.get("/listing/my", response_model=MyListingResponse)
def get_my_listing(
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
    limiter: LocationRateLimiter = Depends(get_limiter),
) -> MyListingResponse:
    """Get the caller's listing with its location-update status."""
    listing = db.get_listing_by_user(user_id)
    if listing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No vendor listing found",
        )
    decision = limiter.check(user_id)
    return MyListingResponse(
        listing=listing_to_response(listing),
        can_update_location=decision.allowed,
        location_update_wait_minutes=decision.wait_minutes,
        tier_limits=TierLimits(
            location_update_cooldown_minutes=int(limiter.cooldown.total_seconds() // 60)
        ),
    )


@router.put("/listing/{listing_id}", response_model=ListingEnvelope)
def update_listing(
    listing_id: str,
    request: ListingUpdateRequest,
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ListingEnvelope:
    """Update listing details. Location changes go through the location route."""
    _owned_listing(db, listing_id, user_id)
    listing = db.update_listing(listing_id, request.model_dump(exclude_none=True), clock.now())
    if listing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Listing not found",
        )
    return ListingEnvelope(listing=listing_to_response(listing), message="Listing updated successfully")


@router.patch(
    "/listing/{listing_id}/location",
    response_model=LocationUpdateResponse,
    responses={status.HTTP_429_TOO_MANY_REQUESTS: {"description": "Location cooldown active"}},
)
def update_location(
    listing_id: str,
    request: LocationUpdateRequest,
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
    limiter: LocationRateLimiter = Depends(get_limiter),
) -> Any:
    """Move the listing if the owner's cooldown has elapsed."""
    _owned_listing(db, listing_id, user_id)

    decision = limiter.attempt(
        user_id,
        lambda now: db.set_listing_location(
            listing_id,
            request.location_lat,
            request.location_lng,
            request.city,
            request.state,
            now,
        ),
    )
    if not decision.allowed:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "error": "Rate limit exceeded",
                "reason": RefusalReason.RATE_LIMITED.value,
                "message": (
                    "Free tier allows 1 location update per hour. "
                    f"Please wait {decision.wait_minutes} minutes."
                ),
                "waitMinutes": decision.wait_minutes,
            },
        )

    listing = decision.value
    if listing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Listing not found",
        )
    next_update = limiter.next_allowed_at(user_id)
    return LocationUpdateResponse(
        listing=listing_to_response(listing),
        message="Location updated successfully",
        next_update_available=next_update.isoformat() if next_update else "",
    )


@router.delete("/listing/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_listing(
    listing_id: str,
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
    limiter: LocationRateLimiter = Depends(get_limiter),
) -> Response:
    """Delete the caller's listing and its cooldown."""
    _owned_listing(db, listing_id, user_id)
    db.delete_listing(listing_id)
    limiter.forget(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/public", response_model=list[PublicListingResponse])
def list_public_listings(db: Database = Depends(get_db)) -> list[PublicListingResponse]:
    """List active listings (public fields only)."""
    return [listing_to_public(listing) for listing in db.list_active_listings()]


@router.get("/public/{listing_id}", response_model=PublicListingResponse)
def get_public_listing(
    listing_id: str,
    db: Database = Depends(get_db),
) -> PublicListingResponse:
    """Get one active listing (public fields only)."""
    listing = db.get_listing(listing_id)
    if listing is None or not listing.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Vendor not found",
        )
    return listing_to_public(listing)
