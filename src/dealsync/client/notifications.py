"""Notification targeting for nearby favorites and flash deals.

This module provides:
- NearbyFavoriteFilter: Distance + per-vendor cooldown gate
- FlashDealFilter: Subscription match and expiry reminder timing
- NotificationTargeter: Feeds domain events through the filters to a Notifier
- SchedulerNotifier: Notifier that delivers reminders through APScheduler

Filters decide; they never deliver. Suppression state is in-memory only
and starts empty on every process start.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from dealsync.core.clock import SystemClock, ensure_utc
from dealsync.core.config import DealSyncConfig
from dealsync.core.geo import haversine_miles

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from dealsync.client.cache import CachedVendor
    from dealsync.client.favorites import FavoritesStore, FavoriteSubscription, FlashSubscriptions
    from dealsync.core.clock import Clock
    from dealsync.core.flash_deals import FlashDeal

logger = logging.getLogger(__name__)

NEARBY_VENDOR = "nearby_vendor"
FLASH_DEAL = "flash_deal"
FLASH_DEAL_REMINDER = "flash_deal_reminder"


@dataclass
class Notification:
    """A notification to hand to the delivery layer."""

    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    """Delivery sink for notifications."""

    def send(self, notification: Notification) -> None: ...

    def schedule(self, notification: Notification, at: datetime) -> None: ...


class NearbyFavoriteFilter:
    """Emits one alert per nearby favorite per cooldown window."""

    def __init__(
        self,
        radius_miles: float = 0.5,
        cooldown_minutes: int = 30,
        clock: Clock | None = None,
    ) -> None:
        self.radius_miles = radius_miles
        self._cooldown = timedelta(minutes=cooldown_minutes)
        self._clock = clock or SystemClock()
        self._last_notified: dict[str, datetime] = {}

    def last_notified(self, vendor_id: str) -> datetime | None:
        return self._last_notified.get(vendor_id)

    def reset(self) -> None:
        self._last_notified.clear()

    def evaluate(
        self,
        latitude: float,
        longitude: float,
        favorites: Iterable[FavoriteSubscription],
        vendors: Mapping[str, CachedVendor],
        radius_miles: float | None = None,
    ) -> list[Notification]:
        """Check every opted-in favorite against the user's position.

        Args:
            latitude: User latitude.
            longitude: User longitude.
            favorites: The user's favorites; only those with
                notify_when_nearby are considered.
            vendors: Known vendor positions by id.
            radius_miles: Override for the configured radius.

        Returns:
            Notifications to emit, one per vendor at most.
        """
        radius = self.radius_miles if radius_miles is None else radius_miles
        now = self._clock.now()
        emitted: list[Notification] = []

        for favorite in favorites:
            if not favorite.notify_when_nearby:
                continue
            vendor = vendors.get(favorite.vendor_id)
            if vendor is None or vendor.latitude is None or vendor.longitude is None:
                continue

            distance = haversine_miles(latitude, longitude, vendor.latitude, vendor.longitude)
            if distance > radius:
                continue

            last = self._last_notified.get(vendor.id)
            if last is not None and now - last < self._cooldown:
                logger.debug("Suppressed nearby alert for %s (notified at %s)", vendor.id, last)
                continue

            self._last_notified[vendor.id] = now
            emitted.append(
                Notification(
                    title="Favorite Vendor Nearby!",
                    body=f"{vendor.name} is {distance:.1f} miles away. Check out their deals!",
                    data={"type": NEARBY_VENDOR, "vendorId": vendor.id, "distance": distance},
                )
            )
        return emitted


class FlashDealFilter:
    """Decides which flash deals a user hears about, and when to remind them."""

    def __init__(self, reminder_minutes: int = 5, clock: Clock | None = None) -> None:
        self._reminder_lead = timedelta(minutes=reminder_minutes)
        self._clock = clock or SystemClock()

    @staticmethod
    def matches(deal: FlashDeal, subscriptions: FlashSubscriptions) -> bool:
        """Vendor and category must both match; an empty set matches anything."""
        vendor_ok = not subscriptions.vendors or deal.vendor_id in subscriptions.vendors
        category_ok = not subscriptions.categories or deal.category in subscriptions.categories
        return vendor_ok and category_ok

    def evaluate(self, deal: FlashDeal, subscriptions: FlashSubscriptions) -> Notification | None:
        if not deal.has_real_discount:
            logger.debug("Flash deal %s has no real discount", deal.id)
            return None
        if not deal.is_active(self._clock.now()):
            return None
        if not self.matches(deal, subscriptions):
            return None
        return Notification(
            title=f"Flash Deal: {deal.title}",
            body=f"{deal.discount_percent:g}% off for a limited time!",
            data={"type": FLASH_DEAL, "dealId": deal.id, "vendorId": deal.vendor_id},
        )

    def reminder_at(self, deal: FlashDeal) -> datetime | None:
        """When to remind about `deal`, or None if that moment has passed."""
        when = ensure_utc(deal.expires_at) - self._reminder_lead
        if when <= self._clock.now():
            return None
        return when

    def reminder(self, deal: FlashDeal) -> tuple[datetime, Notification] | None:
        when = self.reminder_at(deal)
        if when is None:
            return None
        minutes = int(self._reminder_lead.total_seconds() // 60)
        return when, Notification(
            title="Flash deal ending soon",
            body=f"{deal.title} ends in {minutes} minutes.",
            data={"type": FLASH_DEAL_REMINDER, "dealId": deal.id, "vendorId": deal.vendor_id},
        )


class NotificationTargeter:
    """Routes location ticks and new flash deals to a Notifier.

    Usage:
        targeter = NotificationTargeter(notifier, engine.favorites)
        targeter.on_location(lat, lng, {v.id: v for v in engine.vendors.entries})
        targeter.on_flash_deal(deal)
    """

    def __init__(
        self,
        notifier: Notifier,
        favorites: FavoritesStore,
        config: DealSyncConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        config = config or DealSyncConfig()
        self._notifier = notifier
        self._favorites = favorites
        self.nearby = NearbyFavoriteFilter(
            radius_miles=config.default_alert_radius_miles,
            cooldown_minutes=config.notify_cooldown_minutes,
            clock=clock,
        )
        self.flash = FlashDealFilter(reminder_minutes=config.flash_reminder_minutes, clock=clock)

    def on_location(
        self,
        latitude: float,
        longitude: float,
        vendors: Mapping[str, CachedVendor],
    ) -> list[Notification]:
        notifications = self.nearby.evaluate(
            latitude,
            longitude,
            self._favorites.favorites,
            vendors,
            radius_miles=self._favorites.alert_radius,
        )
        for notification in notifications:
            self._notifier.send(notification)
        return notifications

    def on_flash_deal(self, deal: FlashDeal, remind: bool = True) -> Notification | None:
        """Announce a new flash deal and optionally schedule its reminder."""
        notification = self.flash.evaluate(deal, self._favorites.subscriptions)
        if notification is None:
            return None
        self._notifier.send(notification)
        if remind:
            reminder = self.flash.reminder(deal)
            if reminder is not None:
                when, reminder_notification = reminder
                self._notifier.schedule(reminder_notification, when)
        return notification


class SchedulerNotifier:
    """Notifier that hands notifications to `deliver`, deferring scheduled ones.

    Scheduled notifications run as one-shot APScheduler date jobs.
    """

    def __init__(
        self,
        deliver: Callable[[Notification], None],
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self._deliver = deliver
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._owns_scheduler = scheduler is None

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    def stop(self) -> None:
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def send(self, notification: Notification) -> None:
        try:
            self._deliver(notification)
        except Exception:
            logger.exception("Failed to deliver notification %r", notification.title)

    def schedule(self, notification: Notification, at: datetime) -> None:
        job_id = "notify:" + ":".join(
            str(notification.data.get(k, "")) for k in ("type", "dealId", "vendorId")
        )
        self._scheduler.add_job(
            self.send,
            trigger=DateTrigger(run_date=at),
            args=[notification],
            id=job_id,
            name=notification.title,
            replace_existing=True,
        )
        logger.debug("Scheduled %s at %s", job_id, at.isoformat())

    def scheduled_jobs(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]
