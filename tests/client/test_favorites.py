"""Tests for favorites and subscriptions."""

from __future__ import annotations

import pytest

from dealsync.client.favorites import FavoritesStore, FlashSubscriptions
from dealsync.client.kvstore import FAVORITES_KEY, MemoryKVStore


@pytest.fixture
def store() -> MemoryKVStore:
    """Create an in-memory store."""
    return MemoryKVStore()


class TestFavoritesStore:
    """Tests for FavoritesStore."""

    @pytest.mark.asyncio
    async def test_add_again_updates_notify_flag(self, store: MemoryKVStore) -> None:
        """Adding an existing favorite should take the new flag without duplicating it."""
        favorites = FavoritesStore(store)
        await favorites.add("v1", notify_when_nearby=False)
        again = await favorites.add("v1", notify_when_nearby=True)
        assert again.notify_when_nearby is True
        assert len(favorites.favorites) == 1

        reloaded = FavoritesStore(store)
        await reloaded.load()
        subscription = reloaded.get("v1")
        assert subscription is not None
        assert subscription.notify_when_nearby is True

    @pytest.mark.asyncio
    async def test_remove(self, store: MemoryKVStore) -> None:
        """remove() should report whether anything was removed."""
        favorites = FavoritesStore(store)
        await favorites.add("v1")
        assert await favorites.remove("v1")
        assert not await favorites.remove("v1")
        assert not favorites.is_favorite("v1")

    @pytest.mark.asyncio
    async def test_toggle_notify(self, store: MemoryKVStore) -> None:
        """toggle_notify() should flip the flag and ignore unknown vendors."""
        favorites = FavoritesStore(store)
        await favorites.add("v1")
        toggled = await favorites.toggle_notify("v1")
        assert toggled is not None
        assert toggled.notify_when_nearby
        assert [f.vendor_id for f in favorites.nearby_subscriptions()] == ["v1"]
        assert await favorites.toggle_notify("v2") is None

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, store: MemoryKVStore) -> None:
        """Favorites, subscriptions and radius should survive a reload."""
        favorites = FavoritesStore(store)
        await favorites.add("v1", notify_when_nearby=True)
        await favorites.set_subscriptions(vendors={"v1"}, categories={"food"})
        await favorites.set_alert_radius(1.5)

        reloaded = FavoritesStore(store)
        await reloaded.load()
        favorite = reloaded.get("v1")
        assert favorite is not None
        assert favorite.notify_when_nearby
        assert reloaded.subscriptions == FlashSubscriptions({"v1"}, {"food"})
        assert reloaded.alert_radius == 1.5

    @pytest.mark.asyncio
    async def test_set_subscriptions_keeps_unspecified(self, store: MemoryKVStore) -> None:
        """Passing None should keep the current set."""
        favorites = FavoritesStore(store)
        await favorites.set_subscriptions(vendors={"v1"}, categories={"food"})
        subscriptions = await favorites.set_subscriptions(categories=set())
        assert subscriptions.vendors == {"v1"}
        assert subscriptions.categories == set()

    @pytest.mark.asyncio
    async def test_rejects_non_positive_radius(self, store: MemoryKVStore) -> None:
        """The alert radius must be positive."""
        with pytest.raises(ValueError):
            await FavoritesStore(store).set_alert_radius(0)

    @pytest.mark.asyncio
    async def test_malformed_favorites_ignored(self, store: MemoryKVStore) -> None:
        """Corrupt persisted favorites should load as empty."""
        await store.set(FAVORITES_KEY, b"not json")
        favorites = FavoritesStore(store, default_radius=0.75)
        await favorites.load()
        assert favorites.favorites == []
        assert favorites.alert_radius == 0.75
