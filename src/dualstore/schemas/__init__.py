"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .health import HealthResponse, NotificationHealth, OutboxHealth
from .sync import (
    InboundBatchRequest,
    InboundBatchResponse,
    InboundUserRecord,
    ReplayResponse,
    UserWebhookPayload,
    WebhookResponse,
    WebhookUser,
)

__all__ = [
    "HealthResponse", "NotificationHealth", "OutboxHealth",
    "InboundBatchRequest", "InboundBatchResponse", "InboundUserRecord",
    "ReplayResponse", "UserWebhookPayload", "WebhookResponse", "WebhookUser",
]
