"""API routers for the backend service."""

from fastapi import APIRouter

from .routes import health_router
from .v1 import aliases, inbox, rows, trackers, updates

api_router = APIRouter()
api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(trackers.router, prefix="", tags=["trackers"])
api_router.include_router(rows.router, prefix="", tags=["rows"])
api_router.include_router(aliases.router, prefix="", tags=["aliases"])
api_router.include_router(updates.router, prefix="", tags=["updates"])
api_router.include_router(inbox.router, prefix="", tags=["inbox"])

__all__ = ["api_router"]
