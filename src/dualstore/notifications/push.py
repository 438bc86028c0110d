"""Push delivery transport boundary.

Web-push encryption and VAPID signing live outside this package; the
delivery worker only needs something that sends one payload to one
subscription and reports the provider's status code.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from dualstore.repositories.push_subscription_repo import PushSubscriptionRecord

# Provider answers meaning the subscription is permanently gone.
GONE_STATUS_CODES = frozenset({404, 410})
# Provider answers worth retrying besides 5xx.
RETRYABLE_STATUS_CODES = frozenset({408, 429})


@dataclass(frozen=True)
class PushResult:
    status_code: int | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


class PushTransport(Protocol):
    async def send(
        self, subscription: PushSubscriptionRecord, payload: Mapping[str, Any]
    ) -> PushResult: ...


class PushDeliveryError(RuntimeError):
    """Raised by transports when a send fails; ``status_code`` is None for network errors."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_gone(status_code: int | None) -> bool:
    return status_code in GONE_STATUS_CODES


def is_retryable(status_code: int | None) -> bool:
    if status_code is None:
        return True
    return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES
