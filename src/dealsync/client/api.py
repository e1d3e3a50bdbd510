"""HTTP client for the dealsync server API.

This module provides:
- DealsClient: Async HTTP client for listings, flash deals, favorites, reviews
- DealsClient.apply: Remote effector used to drain pending actions
- APIError hierarchy: Translation of HTTP failures

Transport failures, timeouts and 5xx responses raise TransientError so the
caller can retry or fall back to local state. Policy rejections (429, 409,
410) are returned as typed results, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from dealsync.core.clock import ensure_utc
from dealsync.core.flash_deals import FlashDeal
from dealsync.core.types import ActionType, RateDecision, RedemptionResult, RefusalReason

if TYPE_CHECKING:
    from dealsync.client.queue import PendingAction
    from dealsync.core.config import ServerConfig

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Missing or invalid user identity."""


class ForbiddenError(APIError):
    """Caller does not own the resource."""


class NotFoundError(APIError):
    """Resource not found."""


class TransientError(APIError):
    """Server unreachable, timed out, or failed with a 5xx."""


@dataclass
class VendorListing:
    """A vendor's listing as returned by the server."""

    id: str
    user_id: str
    business_name: str
    category: str
    location_lat: float
    location_lng: float
    city: str
    state: str
    last_location_update: datetime
    updated_at: datetime
    description: str | None = None
    phone: str | None = None
    vendor_tier: str = "free"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VendorListing:
        """Create from API response dictionary."""
        return cls(
            id=data["id"],
            user_id=data["userId"],
            business_name=data["businessName"],
            category=data["category"],
            location_lat=data["locationLat"],
            location_lng=data["locationLng"],
            city=data["city"],
            state=data["state"],
            last_location_update=ensure_utc(datetime.fromisoformat(data["lastLocationUpdate"])),
            updated_at=ensure_utc(datetime.fromisoformat(data["updatedAt"])),
            description=data.get("description"),
            phone=data.get("phone"),
            vendor_tier=data.get("vendorTier", "free"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "businessName": self.business_name,
            "category": self.category,
            "locationLat": self.location_lat,
            "locationLng": self.location_lng,
            "city": self.city,
            "state": self.state,
            "lastLocationUpdate": self.last_location_update.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "description": self.description,
            "phone": self.phone,
            "vendorTier": self.vendor_tier,
        }


def flash_deal_from_response(data: dict[str, Any]) -> FlashDeal:
    return FlashDeal(
        id=data["id"],
        vendor_id=data["vendorId"],
        title=data["title"],
        expires_at=ensure_utc(datetime.fromisoformat(data["expiresAt"])),
        category=data.get("category", ""),
        original_price=data.get("originalPrice", 0.0),
        deal_price=data.get("dealPrice", 0.0),
        max_redemptions=data.get("maxRedemptions"),
        current_redemptions=data.get("currentRedemptions", 0),
    )


class DealsClient:
    """Async HTTP client for the dealsync server API.

    Usage:
        async with DealsClient(ServerConfig("http://localhost:8000", "u1")) as client:
            listing = await client.get_my_listing()
    """

    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Server URL, user identity and timeout.
            transport: Optional transport override (tests).
        """
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.server_url,
            timeout=config.timeout,
            headers={USER_HEADER: config.user_id},
            transport=transport,
        )

    @property
    def user_id(self) -> str:
        return self._config.user_id

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> DealsClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise TransientError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _detail(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return default
        if isinstance(body, dict):
            detail = body.get("detail", default)
            if isinstance(detail, dict):
                return str(detail.get("message", default))
            return str(detail)
        return default

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the exception matching an error status."""
        status = response.status_code
        if status >= 500:
            raise TransientError(self._detail(response, "Server error"), status)
        if status == 401:
            raise AuthenticationError(self._detail(response, "User ID required"), 401)
        if status == 403:
            raise ForbiddenError(self._detail(response, "Forbidden"), 403)
        if status == 404:
            raise NotFoundError(self._detail(response, "Resource not found"), 404)
        if status >= 400:
            raise APIError(self._detail(response, "Unknown error"), status)
        return response

    # === Health check ===

    async def health_check(self) -> bool:
        """Check if the server is reachable and healthy."""
        try:
            response = await self._client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    # === Vendor listings ===

    async def get_my_listing(self) -> dict[str, Any] | None:
        """Fetch the caller's listing with its location-update status.

        Returns:
            Response body (listing, canUpdateLocation, ...), or None if the
            caller has no listing yet.
        """
        response = await self._request("GET", "/api/vendors/listing/my")
        if response.status_code == 404:
            return None
        result: dict[str, Any] = self._handle_response(response).json()
        return result

    async def create_listing(self, data: dict[str, Any]) -> VendorListing:
        response = self._handle_response(
            await self._request("POST", "/api/vendors/listing", json=data)
        )
        return VendorListing.from_dict(response.json()["listing"])

    async def update_listing(self, listing_id: str, updates: dict[str, Any]) -> VendorListing:
        response = self._handle_response(
            await self._request("PUT", f"/api/vendors/listing/{listing_id}", json=updates)
        )
        return VendorListing.from_dict(response.json()["listing"])

    async def update_location(
        self,
        listing_id: str,
        location_lat: float,
        location_lng: float,
        city: str | None = None,
        state: str | None = None,
    ) -> RateDecision[VendorListing]:
        """Submit a location update.

        Returns:
            Accepted decision with the updated listing, or a rejected
            decision with the server's wait time.

        Raises:
            ForbiddenError: Caller does not own the listing.
            NotFoundError: Listing does not exist.
            TransientError: Server unreachable.
        """
        body: dict[str, Any] = {"locationLat": location_lat, "locationLng": location_lng}
        if city:
            body["city"] = city
        if state:
            body["state"] = state
        response = await self._request(
            "PATCH", f"/api/vendors/listing/{listing_id}/location", json=body
        )
        if response.status_code == 429:
            body = response.json()
            return RateDecision(allowed=False, wait_minutes=int(body.get("waitMinutes", 0)))
        data = self._handle_response(response).json()
        return RateDecision(allowed=True, value=VendorListing.from_dict(data["listing"]))

    async def delete_listing(self, listing_id: str) -> None:
        self._handle_response(await self._request("DELETE", f"/api/vendors/listing/{listing_id}"))

    # === Flash deals ===

    async def list_active_flash_deals(self) -> list[FlashDeal]:
        response = self._handle_response(await self._request("GET", "/api/flash-deals/active"))
        return [flash_deal_from_response(d) for d in response.json()]

    async def redeem_flash_deal(self, deal_id: str) -> RedemptionResult[FlashDeal]:
        response = await self._request("POST", f"/api/flash-deals/{deal_id}/redeem")
        if response.status_code in (404, 409, 410):
            body = response.json()
            reason = RefusalReason(body.get("reason", RefusalReason.NOT_FOUND.value))
            return RedemptionResult(success=False, reason=reason)
        data = self._handle_response(response).json()
        return RedemptionResult(success=True, deal=flash_deal_from_response(data))

    # === Favorites and reviews ===

    async def put_favorite(self, vendor_id: str, notify_when_nearby: bool = False) -> None:
        self._handle_response(
            await self._request(
                "PUT",
                f"/api/favorites/{vendor_id}",
                json={"notifyWhenNearby": notify_when_nearby},
            )
        )

    async def delete_favorite(self, vendor_id: str) -> None:
        self._handle_response(await self._request("DELETE", f"/api/favorites/{vendor_id}"))

    async def list_favorites(self) -> list[dict[str, Any]]:
        response = self._handle_response(await self._request("GET", "/api/favorites"))
        result: list[dict[str, Any]] = response.json()
        return result

    async def post_review(self, vendor_id: str, rating: int, comment: str = "") -> None:
        self._handle_response(
            await self._request(
                "POST",
                "/api/reviews",
                json={"vendorId": vendor_id, "rating": rating, "comment": comment},
            )
        )

    # === Remote effector ===

    async def apply(self, action: PendingAction) -> str:
        """Apply one pending action remotely.

        A response from the server, whatever its outcome, completes the
        action. Only TransientError escapes, so the queue retries it.

        Returns:
            "applied" or "rejected".
        """
        payload = action.payload
        try:
            if action.type is ActionType.FAVORITE:
                if payload.get("remove"):
                    await self.delete_favorite(payload["vendor_id"])
                else:
                    await self.put_favorite(
                        payload["vendor_id"], bool(payload.get("notify_when_nearby", False))
                    )
            elif action.type is ActionType.REDEEM:
                result = await self.redeem_flash_deal(payload["deal_id"])
                if not result.success:
                    logger.info("Deferred redemption %s refused: %s", payload["deal_id"], result.reason)
                    return "rejected"
            elif action.type is ActionType.REVIEW:
                await self.post_review(
                    payload["vendor_id"], int(payload["rating"]), payload.get("comment", "")
                )
        except TransientError:
            raise
        except APIError as e:
            logger.warning("Server rejected %r: %s", action, e)
            return "rejected"
        return "applied"
