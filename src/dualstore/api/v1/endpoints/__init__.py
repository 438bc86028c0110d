"""API endpoint modules for version 1."""

from .sync import router as sync_router
from .system import router as system_router

__all__ = ["sync_router", "system_router"]
