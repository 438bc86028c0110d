"""Read-only aggregate statistics for the health surface."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import func, select

from dualstore.db.session import Database
from dualstore.db.time import as_utc, utcnow
from dualstore.models import OutboxStatus, SyncDeadLetter, SyncOutbox
from dualstore.repositories.notification_job_repo import NotificationJobRepository
from dualstore.schemas.health import HealthResponse, NotificationHealth, OutboxHealth

logger = logging.getLogger(__name__)


class HealthService:
    def __init__(
        self,
        database: Database | None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self._clock = clock

    def outbox_stats(self, database: Database, now: datetime) -> OutboxHealth:
        with database.transaction() as db:
            pending = db.scalar(
                select(func.count(SyncOutbox.id)).where(SyncOutbox.status == OutboxStatus.PENDING)
            )
            oldest = db.scalar(
                select(func.min(SyncOutbox.created_at)).where(
                    SyncOutbox.status == OutboxStatus.PENDING,
                    SyncOutbox.next_attempt_at <= now,
                )
            )
            dead = db.scalar(select(func.count(SyncDeadLetter.id)))
        return OutboxHealth(
            pending=int(pending or 0),
            oldest_pending_seconds=(
                max(0.0, (now - as_utc(oldest)).total_seconds()) if oldest else None
            ),
            dead_letter=int(dead or 0),
        )

    def check(self) -> HealthResponse:
        """Collect store reachability and backlog figures.

        Raises:
            StoreUnavailableError: the relational store is configured but unreachable.
        """
        database = self.database
        if database is None:
            return HealthResponse(status="unavailable", database="unavailable")

        database.ping(attempts=1)
        now = self._clock()
        outbox = self.outbox_stats(database, now)
        jobs = NotificationJobRepository(database).stats(now)
        return HealthResponse(
            status="ok",
            database="ok",
            outbox=outbox,
            notifications=NotificationHealth(
                pending=jobs.pending,
                oldest_pending_seconds=jobs.oldest_pending_seconds,
                dead_letter=jobs.dead_letter,
                skipped_quiet_hours=jobs.skipped_quiet_hours,
            ),
        )
