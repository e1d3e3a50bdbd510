"""Shared configuration classes for dealsync.

This module defines configuration classes used by both client and server components.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields

ENV_PREFIX = "DEALSYNC_"


@dataclass
class DealSyncConfig:
    """Tunables for the offline and rate-governance components.

    Attributes:
        cache_ttl_hours: Cached entries older than this are never surfaced.
        max_cached_deals: Capacity of the deal cache.
        max_cached_vendors: Capacity of the vendor cache.
        max_retries: Failed attempts tolerated before a pending action is dropped.
        location_cooldown_minutes: Minimum gap between accepted location updates.
        notify_cooldown_minutes: Minimum gap between nearby alerts for one vendor.
        default_alert_radius_miles: Nearby alert radius when the user set none.
        flash_reminder_minutes: Reminder lead time before a flash deal expires.
        request_timeout: Timeout in seconds for every remote call.
    """

    cache_ttl_hours: float = 24
    max_cached_deals: int = 100
    max_cached_vendors: int = 50
    max_retries: int = 3
    location_cooldown_minutes: int = 60
    notify_cooldown_minutes: int = 30
    default_alert_radius_miles: float = 0.5
    flash_reminder_minutes: int = 5
    request_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> DealSyncConfig:
        """Build a config from DEALSYNC_* environment variables.

        Unset variables keep their defaults, e.g. DEALSYNC_MAX_RETRIES=5.
        """
        values: dict[str, int | float] = {}
        for f in fields(cls):
            raw = os.environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            caster = int if f.type in ("int", int) else float
            values[f.name] = caster(raw)
        return cls(**values)  # type: ignore[arg-type]


@dataclass
class ServerConfig:
    """Configuration for connecting to a dealsync server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://deals.example.com").
        user_id: Identity sent in the X-User-Id header.
        timeout: Request timeout in seconds.
    """

    server_url: str
    user_id: str
    timeout: float = 5.0

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.server_url.startswith("https://")
