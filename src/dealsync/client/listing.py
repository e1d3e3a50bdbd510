"""Vendor listing service with optimistic local fallback.

The server owns listings and the location cooldown. When it cannot be
reached, the client applies the same one-update-per-hour policy locally so
the vendor sees consistent behaviour; the next successful refresh replaces
the local copy and reseeds the local cooldown from the server's
lastLocationUpdate.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from dealsync.client.api import TransientError, VendorListing
from dealsync.client.kvstore import VENDOR_LISTING_KEY, KVStoreError
from dealsync.core.clock import SystemClock
from dealsync.core.config import DealSyncConfig
from dealsync.core.ratelimit import LocationRateLimiter

if TYPE_CHECKING:
    from datetime import datetime

    from dealsync.client.api import DealsClient
    from dealsync.client.kvstore import KVStore
    from dealsync.core.clock import Clock
    from dealsync.core.types import RateDecision

logger = logging.getLogger(__name__)


def new_listing_id(now: datetime) -> str:
    """Listing id in the server's format: vl_<epoch ms>_<random>."""
    return f"vl_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}"


class VendorListingService:
    """The signed-in vendor's listing.

    Usage:
        service = VendorListingService(client, store)
        await service.load()
        await service.refresh()
        decision = await service.update_location(40.7, -74.0)
        if not decision.allowed:
            print(f"Try again in {decision.wait_minutes} minutes")
    """

    def __init__(
        self,
        client: DealsClient,
        store: KVStore,
        clock: Clock | None = None,
        config: DealSyncConfig | None = None,
    ) -> None:
        config = config or DealSyncConfig()
        self._client = client
        self._store = store
        self._clock = clock or SystemClock()
        self.limiter = LocationRateLimiter(config.location_cooldown_minutes, self._clock)
        self.listing: VendorListing | None = None

    @property
    def user_id(self) -> str:
        return self._client.user_id

    # === Persistence ===

    async def load(self) -> VendorListing | None:
        """Restore the last known listing snapshot."""
        try:
            raw = await self._store.get(VENDOR_LISTING_KEY)
        except KVStoreError as e:
            logger.warning("Failed to load vendor listing: %s", e)
            return None
        if not raw:
            return None
        try:
            self.listing = VendorListing.from_dict(json.loads(raw))
        except (ValueError, KeyError) as e:
            logger.warning("Ignoring malformed vendor listing snapshot: %s", e)
            return None
        self.limiter.record(self.user_id, self.listing.last_location_update)
        return self.listing

    async def _persist(self) -> None:
        try:
            if self.listing is None:
                await self._store.remove(VENDOR_LISTING_KEY)
            else:
                await self._store.set(VENDOR_LISTING_KEY, json.dumps(self.listing.to_dict()).encode())
        except KVStoreError as e:
            logger.warning("Failed to persist %s: %s", VENDOR_LISTING_KEY, e)

    def _adopt(self, listing: VendorListing | None) -> None:
        self.listing = listing
        if listing is None:
            self.limiter.forget(self.user_id)
        else:
            self.limiter.record(self.user_id, listing.last_location_update)

    # === Operations ===

    async def refresh(self) -> VendorListing | None:
        """Replace the local listing with the server's.

        Returns the local snapshot unchanged if the server is unreachable.
        """
        try:
            data = await self._client.get_my_listing()
        except TransientError as e:
            logger.warning("Listing refresh failed, keeping local copy: %s", e)
            return self.listing

        self._adopt(VendorListing.from_dict(data["listing"]) if data else None)
        await self._persist()
        return self.listing

    def can_update_location(self) -> RateDecision[None]:
        return self.limiter.check(self.user_id)

    async def create_listing(self, data: dict[str, Any]) -> VendorListing:
        """Create the listing remotely, or locally if the server is unreachable.

        Args:
            data: camelCase listing fields (businessName, category,
                locationLat, locationLng, city, state, ...).
        """
        try:
            listing = await self._client.create_listing(data)
        except TransientError as e:
            logger.warning("Listing creation failed, creating locally: %s", e)
            now = self._clock.now()
            listing = VendorListing.from_dict(
                {
                    **data,
                    "id": new_listing_id(now),
                    "userId": self.user_id,
                    "lastLocationUpdate": now.isoformat(),
                    "updatedAt": now.isoformat(),
                }
            )

        self._adopt(listing)
        await self._persist()
        return listing

    async def update_location(
        self,
        location_lat: float,
        location_lng: float,
        city: str | None = None,
        state: str | None = None,
    ) -> RateDecision[VendorListing]:
        """Move the listing, subject to the location cooldown.

        Raises:
            ValueError: There is no listing to move.
            ForbiddenError/NotFoundError: Server refused the listing id.
        """
        if self.listing is None:
            raise ValueError("No vendor listing to update")

        try:
            decision = await self._client.update_location(
                self.listing.id, location_lat, location_lng, city, state
            )
        except TransientError as e:
            logger.warning("Location update failed, applying locally: %s", e)
            return await self._update_locally(self.listing, location_lat, location_lng, city, state)

        if decision.allowed and decision.value is not None:
            self._adopt(decision.value)
            await self._persist()
        return decision

    async def _update_locally(
        self,
        current: VendorListing,
        location_lat: float,
        location_lng: float,
        city: str | None,
        state: str | None,
    ) -> RateDecision[VendorListing]:
        def move(now: datetime) -> VendorListing:
            return replace(
                current,
                location_lat=location_lat,
                location_lng=location_lng,
                city=city or current.city,
                state=state or current.state,
                last_location_update=now,
                updated_at=now,
            )

        decision = self.limiter.attempt(self.user_id, move)
        if decision.allowed:
            self.listing = decision.value
            await self._persist()
        return decision

    async def delete_listing(self) -> None:
        if self.listing is None:
            return
        await self._client.delete_listing(self.listing.id)
        self._adopt(None)
        await self._persist()
