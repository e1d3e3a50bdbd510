"""Flash deal API routes.

Redemptions for one deal are serialized so that concurrent requests can
never push current_redemptions past max_redemptions.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from dealsync.core.clock import Clock, ensure_utc
from dealsync.core.flash_deals import refusal_reason
from dealsync.core.locks import KeyedLock
from dealsync.core.types import RefusalReason
from dealsync.server.api.deps import get_clock, get_db, get_deal_locks, get_user_id
from dealsync.server.database import Database
from dealsync.server.schemas import (
    FlashDealCreateRequest,
    FlashDealResponse,
    flash_deal_to_policy,
    flash_deal_to_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/flash-deals", tags=["flash-deals"])

REFUSAL_STATUS = {
    RefusalReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RefusalReason.CAPACITY_EXHAUSTED: status.HTTP_409_CONFLICT,
    RefusalReason.DEAL_EXPIRED: status.HTTP_410_GONE,
}

REFUSAL_MESSAGE = {
    RefusalReason.NOT_FOUND: "Flash deal not found",
    RefusalReason.CAPACITY_EXHAUSTED: "This flash deal has been fully redeemed",
    RefusalReason.DEAL_EXPIRED: "This flash deal has expired",
}


def _refusal(reason: RefusalReason) -> JSONResponse:
    return JSONResponse(
        status_code=REFUSAL_STATUS[reason],
        content={"reason": reason.value, "message": REFUSAL_MESSAGE[reason]},
    )


@router.post(
    "",
    response_model=FlashDealResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_flash_deal(
    request: FlashDealCreateRequest,
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> FlashDealResponse:
    """Create a flash deal on the caller's listing."""
    listing = db.get_listing_by_user(user_id)
    if listing is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only vendors with a listing can create flash deals",
        )

    try:
        expires_at = ensure_utc(datetime.fromisoformat(request.expires_at))
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="expiresAt must be an ISO 8601 timestamp",
        ) from e

    now = clock.now()
    if expires_at <= now:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="expiresAt must be in the future",
        )

    fields = request.model_dump(exclude={"title", "expires_at"})
    fields["category"] = fields["category"] or listing.category
    deal = db.create_flash_deal(
        f"fd_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}",
        listing.id,
        request.title,
        expires_at,
        now,
        **fields,
    )
    logger.info("Flash deal %s created for vendor %s", deal.id, listing.id)
    return flash_deal_to_response(deal)


@router.get("/active", response_model=list[FlashDealResponse])
def list_active_flash_deals(
    db: Database = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> list[FlashDealResponse]:
    """List unexpired flash deals with capacity left."""
    return [flash_deal_to_response(d) for d in db.list_active_flash_deals(clock.now())]


@router.post(
    "/{deal_id}/redeem",
    response_model=FlashDealResponse,
    responses={
        status.HTTP_404_NOT_FOUND: {"description": "Unknown deal"},
        status.HTTP_409_CONFLICT: {"description": "Capacity exhausted"},
        status.HTTP_410_GONE: {"description": "Deal expired"},
    },
)
def redeem_flash_deal(
    deal_id: str,
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
    clock: Clock = Depends(get_clock),
    locks: KeyedLock = Depends(get_deal_locks),
) -> Any:
    """Redeem one unit of a flash deal."""
    with locks.hold(deal_id):
        row = db.get_flash_deal(deal_id)
        if row is None:
            return _refusal(RefusalReason.NOT_FOUND)

        now = clock.now()
        reason = refusal_reason(flash_deal_to_policy(row), now)
        if reason is not None:
            logger.info("Redemption of %s by %s refused: %s", deal_id, user_id, reason.value)
            return _refusal(reason)

        deal = db.redeem_flash_deal(deal_id, now)
        if deal is None:
            # Lost to a writer outside this process
            return _refusal(RefusalReason.CAPACITY_EXHAUSTED)

    logger.info(
        "Flash deal %s redeemed by %s (%d/%s)",
        deal_id,
        user_id,
        deal.current_redemptions,
        deal.max_redemptions if deal.max_redemptions is not None else "unlimited",
    )
    return flash_deal_to_response(deal)
