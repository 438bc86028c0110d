"""Version 1 API endpoints."""

from .endpoints import sync_router, system_router

__all__ = ["sync_router", "system_router"]
