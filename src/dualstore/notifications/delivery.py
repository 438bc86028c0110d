"""Push delivery of due notification jobs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from dualstore.db.time import utcnow
from dualstore.notifications.push import (
    PushDeliveryError,
    PushResult,
    PushTransport,
    is_gone,
    is_retryable,
)
from dualstore.notifications.time import is_time_inside_quiet_hours, time_in_zone
from dualstore.repositories.notification_job_repo import (
    NotificationJobRecord,
    NotificationJobRepository,
)
from dualstore.repositories.notification_preference_repo import NotificationPreferenceRepository
from dualstore.repositories.push_subscription_repo import (
    PushSubscriptionRecord,
    PushSubscriptionRepository,
)
from dualstore.services.outbox import compute_backoff_seconds

logger = logging.getLogger(__name__)

NO_SUBSCRIPTIONS_ERROR = "Geen actieve push abonnementen"


@dataclass
class DeliveryResult:
    claimed: int = 0
    sent: int = 0
    retried: int = 0
    dead_lettered: int = 0
    skipped: int = 0


class NotificationDelivery:
    """Claims due jobs and fans each one out to the user's active subscriptions."""

    def __init__(
        self,
        jobs: NotificationJobRepository,
        subscriptions: PushSubscriptionRepository,
        preferences: NotificationPreferenceRepository,
        transport: PushTransport | None,
        *,
        max_retries: int = 6,
        retry_base_seconds: int = 5,
        retry_max_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.jobs = jobs
        self.subscriptions = subscriptions
        self.preferences = preferences
        self.transport = transport
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.transport is not None

    async def process_batch(self, limit: int) -> DeliveryResult:
        result = DeliveryResult()
        transport = self.transport
        if transport is None:
            return result

        jobs = self.jobs.claim_due(limit, now=self._clock())
        result.claimed = len(jobs)
        for job in jobs:
            outcome = await self._deliver(transport, job)
            setattr(result, outcome, getattr(result, outcome) + 1)
        return result

    def _in_quiet_hours(self, job: NotificationJobRecord) -> bool:
        preferences = self.preferences.get(job.user_id)
        if preferences is None:
            return False
        local_time = time_in_zone(self._clock(), preferences.timezone)
        return is_time_inside_quiet_hours(
            local_time, preferences.quiet_hours_start, preferences.quiet_hours_end
        )

    @staticmethod
    async def _send(
        transport: PushTransport, subscription: PushSubscriptionRecord, job: NotificationJobRecord
    ) -> PushResult:
        try:
            return await transport.send(subscription, job.payload)
        except PushDeliveryError as exc:
            return PushResult(status_code=exc.status_code, error=str(exc))
        except Exception as exc:
            # No status code, so the job is retried like a network error.
            logger.exception("Push transport failed for subscription %s", subscription.id)
            return PushResult(status_code=None, error=str(exc) or exc.__class__.__name__)

    async def _deliver(self, transport: PushTransport, job: NotificationJobRecord) -> str:
        """Deliver one claimed job and return the name of the counter it lands in."""
        if self._in_quiet_hours(job):
            self.jobs.mark_skipped_quiet_hours(job.id)
            logger.info("Notification job %s skipped: quiet hours", job.id)
            return "skipped"

        subscriptions = self.subscriptions.list_active(job.user_id)
        if not subscriptions:
            self.jobs.mark_dead_letter(job.id, NO_SUBSCRIPTIONS_ERROR)
            return "dead_lettered"

        delivered = False
        retryable = False
        errors: list[str] = []
        for subscription in subscriptions:
            outcome = await self._send(transport, subscription, job)
            if outcome.ok:
                delivered = True
                self.subscriptions.mark_success(subscription.id)
                self.jobs.insert_delivery_log(job.id, subscription.id, True, outcome.status_code)
                continue

            message = outcome.error or f"Push provider responded with {outcome.status_code}"
            errors.append(message)
            self.jobs.insert_delivery_log(
                job.id, subscription.id, False, outcome.status_code, message
            )
            if is_gone(outcome.status_code):
                self.subscriptions.mark_expired(subscription.id, message)
            else:
                self.subscriptions.mark_error(subscription.id, message)
                retryable = retryable or is_retryable(outcome.status_code)

        if delivered:
            self.jobs.mark_sent(job.id)
            return "sent"

        error_message = " | ".join(errors)
        if retryable and job.attempt_count < self.max_retries:
            delay = compute_backoff_seconds(
                job.attempt_count, self.retry_base_seconds, self.retry_max_seconds
            )
            next_attempt = self.jobs.mark_retry(job.id, delay, error_message)
            logger.warning(
                "Notification job %s failed (attempt %d), retry at %s: %s",
                job.id,
                job.attempt_count,
                next_attempt.isoformat(),
                error_message,
            )
            return "retried"

        self.jobs.mark_dead_letter(job.id, error_message)
        logger.error("Notification job %s dead-lettered: %s", job.id, error_message)
        return "dead_lettered"
