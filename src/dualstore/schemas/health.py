"""Health surface schemas."""

from typing import Literal

from pydantic import BaseModel, Field


class OutboxHealth(BaseModel):
    pending: int = Field(..., description="Events waiting for delivery")
    oldest_pending_seconds: float | None = Field(
        None, description="Age of the oldest due pending event"
    )
    dead_letter: int = Field(..., description="Events parked in the dead-letter store")


class NotificationHealth(BaseModel):
    pending: int
    oldest_pending_seconds: float | None = None
    dead_letter: int
    skipped_quiet_hours: int


class HealthResponse(BaseModel):
    """Aggregate read-only health report."""

    status: Literal["ok", "unavailable"]
    database: Literal["ok", "unavailable"]
    outbox: OutboxHealth | None = None
    notifications: NotificationHealth | None = None
