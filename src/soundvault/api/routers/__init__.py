"""API router initialization."""

# Hey future me, this is the MAIN API router aggregator! main.py mounts it under /api, and
# each router carries its own prefix (/library, /sync, /settings, /health), so endpoints
# become /api/library/entries, /api/sync/full and so on. /api/events has no prefix.

from fastapi import APIRouter

from soundvault.api.routers import events, health, library, settings, sync

api_router = APIRouter()

api_router.include_router(library.router, tags=["Library"])
api_router.include_router(sync.router, tags=["Sync"])
api_router.include_router(settings.router, tags=["Settings"])
api_router.include_router(events.router, tags=["Events"])
api_router.include_router(health.router, tags=["Health"])

__all__ = ["api_router"]
