"""API router initialization."""

# Hey future me, this is the MAIN API router aggregator! It gets mounted at /api in main.py,
# so auth endpoints become /api/auth/login, the player /api/player/play and so on. /health
# is NOT in here; main.py mounts it at the root for the container health checks.

from fastapi import APIRouter

from sonicvault.api.routers import auth, download, health, library, player, profile

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(profile.router, tags=["Profile"])
api_router.include_router(download.router, tags=["Downloads"])
api_router.include_router(library.router, tags=["Library"])
api_router.include_router(player.router, prefix="/player", tags=["Player"])

__all__ = [
    "api_router",
    "auth",
    "download",
    "health",
    "library",
    "player",
    "profile",
]
