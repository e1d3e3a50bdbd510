"""Per-user favorites and notification subscriptions.

This module provides:
- FavoriteSubscription: One favorited vendor and its nearby-alert toggle
- FlashSubscriptions: Vendor/category sets for flash-deal alerts
- FavoritesStore: KV-persisted favorites, subscriptions and alert radius

Writes are applied locally first; remote confirmation goes through the
sync engine's pending action queue.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dealsync.client.kvstore import (
    ALERT_RADIUS_KEY,
    FAVORITES_KEY,
    SUBSCRIPTIONS_KEY,
    KVStoreError,
)

if TYPE_CHECKING:
    from dealsync.client.kvstore import KVStore

logger = logging.getLogger(__name__)

DEFAULT_ALERT_RADIUS_MILES = 0.5


@dataclass
class FavoriteSubscription:
    """A favorited vendor."""

    vendor_id: str
    notify_when_nearby: bool = False


@dataclass
class FlashSubscriptions:
    """Which flash deals a user wants to hear about.

    An empty set means "subscribed to everything" for that dimension.
    """

    vendors: set[str] = field(default_factory=set)
    categories: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, list[str]]:
        return {"vendors": sorted(self.vendors), "categories": sorted(self.categories)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlashSubscriptions:
        return cls(vendors=set(data.get("vendors", [])), categories=set(data.get("categories", [])))


class FavoritesStore:
    """Favorites, flash subscriptions and nearby radius for one user."""

    def __init__(
        self,
        store: KVStore,
        default_radius: float = DEFAULT_ALERT_RADIUS_MILES,
    ) -> None:
        self._store = store
        self._default_radius = default_radius
        self._favorites: dict[str, FavoriteSubscription] = {}
        self.subscriptions = FlashSubscriptions()
        self.alert_radius = default_radius

    @property
    def favorites(self) -> list[FavoriteSubscription]:
        return list(self._favorites.values())

    def is_favorite(self, vendor_id: str) -> bool:
        return vendor_id in self._favorites

    def get(self, vendor_id: str) -> FavoriteSubscription | None:
        return self._favorites.get(vendor_id)

    def nearby_subscriptions(self) -> list[FavoriteSubscription]:
        """Favorites with nearby alerts switched on."""
        return [f for f in self._favorites.values() if f.notify_when_nearby]

    async def _read_json(self, key: str) -> Any:
        try:
            raw = await self._store.get(key)
        except KVStoreError as e:
            logger.warning("Failed to load %s: %s", key, e)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed %s", key)
            return None

    async def _write_json(self, key: str, value: Any) -> None:
        try:
            await self._store.set(key, json.dumps(value).encode())
        except KVStoreError as e:
            logger.warning("Failed to persist %s: %s", key, e)

    async def load(self) -> None:
        favorites = await self._read_json(FAVORITES_KEY)
        if isinstance(favorites, list):
            self._favorites = {
                f["vendor_id"]: FavoriteSubscription(f["vendor_id"], bool(f.get("notify_when_nearby")))
                for f in favorites
            }
        subscriptions = await self._read_json(SUBSCRIPTIONS_KEY)
        if isinstance(subscriptions, dict):
            self.subscriptions = FlashSubscriptions.from_dict(subscriptions)
        radius = await self._read_json(ALERT_RADIUS_KEY)
        if isinstance(radius, (int, float)) and radius > 0:
            self.alert_radius = float(radius)

    async def _save_favorites(self) -> None:
        await self._write_json(
            FAVORITES_KEY,
            [
                {"vendor_id": f.vendor_id, "notify_when_nearby": f.notify_when_nearby}
                for f in self._favorites.values()
            ],
        )

    async def add(self, vendor_id: str, notify_when_nearby: bool = False) -> FavoriteSubscription:
        """Favorite a vendor, or update the notify flag of an existing favorite."""
        favorite = self._favorites.get(vendor_id)
        if favorite is None:
            favorite = FavoriteSubscription(vendor_id, notify_when_nearby)
            self._favorites[vendor_id] = favorite
        elif favorite.notify_when_nearby != notify_when_nearby:
            favorite.notify_when_nearby = notify_when_nearby
        else:
            return favorite
        await self._save_favorites()
        return favorite

    async def remove(self, vendor_id: str) -> bool:
        if self._favorites.pop(vendor_id, None) is None:
            return False
        await self._save_favorites()
        return True

    async def toggle_notify(self, vendor_id: str) -> FavoriteSubscription | None:
        favorite = self._favorites.get(vendor_id)
        if favorite is None:
            return None
        favorite.notify_when_nearby = not favorite.notify_when_nearby
        await self._save_favorites()
        return favorite

    async def set_alert_radius(self, miles: float) -> None:
        if miles <= 0:
            raise ValueError("Alert radius must be positive")
        self.alert_radius = miles
        await self._write_json(ALERT_RADIUS_KEY, miles)

    async def set_subscriptions(
        self,
        vendors: set[str] | None = None,
        categories: set[str] | None = None,
    ) -> FlashSubscriptions:
        """Replace the flash-deal subscription sets (None keeps the current set)."""
        if vendors is not None:
            self.subscriptions.vendors = set(vendors)
        if categories is not None:
            self.subscriptions.categories = set(categories)
        await self._write_json(SUBSCRIPTIONS_KEY, self.subscriptions.to_dict())
        return self.subscriptions
