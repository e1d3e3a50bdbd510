"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from dealsync.server.api import favorites, flash_deals, health, listings

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(listings.router)
router.include_router(flash_deals.router)
router.include_router(favorites.router)
