"""Favorites and reviews API routes.

These are the endpoints the client's pending action queue replays against.
PUT and DELETE on a favorite are idempotent so a replayed action is harmless.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from dealsync.server.api.deps import get_db, get_user_id
from dealsync.server.database import Database
from dealsync.server.schemas import (
    FavoriteRequest,
    FavoriteResponse,
    ReviewRequest,
    ReviewResponse,
    favorite_to_response,
)

router = APIRouter(prefix="/api", tags=["favorites"])


@router.get("/favorites", response_model=list[FavoriteResponse])
def list_favorites(
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
) -> list[FavoriteResponse]:
    """List the caller's favorites."""
    return [favorite_to_response(f) for f in db.list_favorites(user_id)]


@router.put("/favorites/{vendor_id}", response_model=FavoriteResponse)
def put_favorite(
    vendor_id: str,
    request: FavoriteRequest,
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
) -> FavoriteResponse:
    """Favorite a vendor, or update its nearby-alert flag."""
    favorite = db.upsert_favorite(user_id, vendor_id, request.notify_when_nearby)
    return favorite_to_response(favorite)


@router.delete("/favorites/{vendor_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_favorite(
    vendor_id: str,
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
) -> Response:
    """Unfavorite a vendor. Unknown favorites are not an error."""
    db.delete_favorite(user_id, vendor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/reviews",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_review(
    request: ReviewRequest,
    user_id: str = Depends(get_user_id),
    db: Database = Depends(get_db),
) -> ReviewResponse:
    """Rate a vendor."""
    review = db.create_review(user_id, request.vendor_id, request.rating, request.comment)
    return ReviewResponse(
        id=review.id,
        vendor_id=review.vendor_id,
        rating=review.rating,
        comment=review.comment,
        created_at=review.created_at.isoformat(),
    )
