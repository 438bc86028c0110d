"""Data access helpers for planned notification jobs and their delivery log."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import as_utc, utcnow
from dualstore.models import JobStatus, NotificationDeliveryLog, NotificationJob
from dualstore.models.notification import OPEN_JOB_STATUSES
from dualstore.notifications.types import JobCandidate

__all__ = ["JobStats", "NotificationJobRecord", "NotificationJobRepository"]

MAX_ERROR_LENGTH = 1000

# A planner run never rewrites jobs already handed to or finished by delivery.
_PRESERVED_STATUSES = (JobStatus.SENT, JobStatus.PROCESSING)


@dataclass(frozen=True)
class NotificationJobRecord:
    id: int
    user_id: str
    mode: str
    reminder_date: date
    fire_at: datetime
    payload: dict[str, Any]
    dedupe_key: str
    status: str
    attempt_count: int
    next_attempt_at: datetime
    last_error: str | None
    program_id: str | None
    program_schedule_id: str | None
    personal_goal_id: str | None

    @classmethod
    def from_row(cls, row: NotificationJob) -> NotificationJobRecord:
        return cls(
            id=row.id,
            user_id=row.user_id,
            mode=row.mode,
            reminder_date=row.reminder_date,
            fire_at=as_utc(row.fire_at),
            payload=dict(row.payload or {}),
            dedupe_key=row.dedupe_key,
            status=row.status,
            attempt_count=row.attempt_count,
            next_attempt_at=as_utc(row.next_attempt_at),
            last_error=row.last_error,
            program_id=row.program_id,
            program_schedule_id=row.program_schedule_id,
            personal_goal_id=row.personal_goal_id,
        )


@dataclass(frozen=True)
class JobStats:
    pending: int
    oldest_pending_seconds: float | None
    dead_letter: int
    skipped_quiet_hours: int


class NotificationJobRepository:
    def __init__(self, database: Database) -> None:
        self.database = database

    def upsert_jobs(self, candidates: Iterable[JobCandidate], session: Session | None = None) -> int:
        """Insert or refresh jobs keyed by dedupe key.

        Rows already ``sent`` or ``processing`` keep their status, attempt
        count, retry time and processed time; every other row is reset to the
        planned state with a fresh attempt budget.
        """
        written = 0
        now = utcnow()
        table = NotificationJob.__table__.c
        preserved = table.status.in_(_PRESERVED_STATUSES)

        def keep(column: Any, planned_value: Any) -> Any:
            return case((preserved, column), else_=planned_value)

        with self.database.scope(session) as db:
            for candidate in candidates:
                processed_at = now if candidate.status == JobStatus.SKIPPED_QUIET_HOURS else None
                planned = {
                    "user_id": candidate.user_id,
                    "program_id": candidate.program_id,
                    "program_schedule_id": candidate.program_schedule_id,
                    "personal_goal_id": candidate.personal_goal_id,
                    "reminder_date": candidate.reminder_date,
                    "mode": candidate.mode.value,
                    "fire_at": candidate.fire_at,
                    "payload": candidate.payload,
                }
                stmt = upsert_insert(db, NotificationJob).values(
                    dedupe_key=candidate.dedupe_key,
                    status=candidate.status,
                    attempt_count=0,
                    next_attempt_at=now,
                    processed_at=processed_at,
                    created_at=now,
                    updated_at=now,
                    **planned,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[NotificationJob.dedupe_key],
                    set_={
                        **planned,
                        "status": keep(table.status, stmt.excluded.status),
                        "attempt_count": keep(table.attempt_count, 0),
                        "next_attempt_at": keep(table.next_attempt_at, stmt.excluded.next_attempt_at),
                        "processed_at": keep(table.processed_at, stmt.excluded.processed_at),
                        "last_error": keep(table.last_error, None),
                        "updated_at": now,
                    },
                )
                db.execute(stmt)
                written += 1
        return written

    def cancel_for_user(self, user_id: str, session: Session | None = None) -> int:
        return self._cancel(user_id, None, session)

    def cancel_not_in_set(
        self, user_id: str, keep_keys: Iterable[str], session: Session | None = None
    ) -> int:
        """Cancel the user's open jobs whose dedupe key is not in ``keep_keys``."""
        return self._cancel(user_id, list(keep_keys), session)

    def _cancel(self, user_id: str, keep_keys: list[str] | None, session: Session | None) -> int:
        now = utcnow()
        with self.database.scope(session) as db:
            stmt = update(NotificationJob).where(
                NotificationJob.user_id == user_id,
                NotificationJob.status.in_(OPEN_JOB_STATUSES),
            )
            if keep_keys:
                stmt = stmt.where(NotificationJob.dedupe_key.not_in(keep_keys))
            result = db.execute(
                stmt.values(status=JobStatus.CANCELLED, processed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    def list_for_user(
        self, user_id: str, session: Session | None = None
    ) -> list[NotificationJobRecord]:
        with self.database.scope(session) as db:
            rows = db.scalars(
                select(NotificationJob)
                .where(NotificationJob.user_id == user_id)
                .order_by(NotificationJob.fire_at, NotificationJob.id)
                .execution_options(populate_existing=True)
            ).all()
            return [NotificationJobRecord.from_row(row) for row in rows]

    def claim_due(self, limit: int, now: datetime | None = None) -> list[NotificationJobRecord]:
        """Atomically move due pending jobs to ``processing`` and return them."""
        now = now or utcnow()
        claimed: list[NotificationJobRecord] = []
        with self.database.transaction() as db:
            ids = db.scalars(
                select(NotificationJob.id)
                .where(
                    NotificationJob.status == JobStatus.PENDING,
                    NotificationJob.next_attempt_at <= now,
                    NotificationJob.fire_at <= now,
                )
                .order_by(NotificationJob.fire_at, NotificationJob.id)
                .limit(limit)
                .with_for_update(skip_locked=True)
            ).all()

            for job_id in ids:
                result = db.execute(
                    update(NotificationJob)
                    .where(NotificationJob.id == job_id, NotificationJob.status == JobStatus.PENDING)
                    .values(
                        status=JobStatus.PROCESSING,
                        attempt_count=NotificationJob.attempt_count + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue
                row = db.get(NotificationJob, job_id, populate_existing=True)
                claimed.append(NotificationJobRecord.from_row(row))
        return claimed

    def release_stale_claims(self, older_than: timedelta) -> int:
        """Return jobs stuck in ``processing`` to ``pending``."""
        now = utcnow()
        with self.database.transaction() as db:
            result = db.execute(
                update(NotificationJob)
                .where(
                    NotificationJob.status == JobStatus.PROCESSING,
                    NotificationJob.updated_at < now - older_than,
                )
                .values(status=JobStatus.PENDING, next_attempt_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    def mark_sent(self, job_id: int) -> None:
        self._finish(job_id, JobStatus.SENT, None)

    def mark_skipped_quiet_hours(self, job_id: int) -> None:
        self._finish(job_id, JobStatus.SKIPPED_QUIET_HOURS, None)

    def mark_dead_letter(self, job_id: int, error_message: str) -> None:
        self._finish(job_id, JobStatus.DEAD_LETTER, error_message)

    def mark_retry(self, job_id: int, delay_seconds: float, error_message: str) -> datetime:
        now = utcnow()
        next_attempt_at = now + timedelta(seconds=delay_seconds)
        with self.database.transaction() as db:
            db.execute(
                update(NotificationJob)
                .where(NotificationJob.id == job_id)
                .values(
                    status=JobStatus.PENDING,
                    next_attempt_at=next_attempt_at,
                    last_error=error_message[:MAX_ERROR_LENGTH],
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        return next_attempt_at

    def _finish(self, job_id: int, status: str, error_message: str | None) -> None:
        now = utcnow()
        with self.database.transaction() as db:
            db.execute(
                update(NotificationJob)
                .where(NotificationJob.id == job_id)
                .values(
                    status=status,
                    last_error=error_message[:MAX_ERROR_LENGTH] if error_message else None,
                    processed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

    def insert_delivery_log(
        self,
        job_id: int,
        subscription_id: int,
        success: bool,
        status_code: int | None = None,
        error_message: str | None = None,
    ) -> None:
        with self.database.transaction() as db:
            db.add(
                NotificationDeliveryLog(
                    job_id=job_id,
                    subscription_id=subscription_id,
                    success=success,
                    status_code=status_code,
                    error_message=error_message[:MAX_ERROR_LENGTH] if error_message else None,
                )
            )

    def list_delivery_log(self, job_id: int) -> list[NotificationDeliveryLog]:
        with self.database.transaction() as db:
            return list(
                db.scalars(
                    select(NotificationDeliveryLog)
                    .where(NotificationDeliveryLog.job_id == job_id)
                    .order_by(NotificationDeliveryLog.id)
                ).all()
            )

    def stats(self, now: datetime | None = None) -> JobStats:
        now = now or utcnow()
        with self.database.transaction() as db:
            counts = dict(
                db.execute(
                    select(NotificationJob.status, func.count(NotificationJob.id)).group_by(
                        NotificationJob.status
                    )
                ).all()
            )
            oldest = db.scalar(
                select(func.min(NotificationJob.fire_at)).where(
                    NotificationJob.status == JobStatus.PENDING,
                    NotificationJob.fire_at <= now,
                )
            )
        return JobStats(
            pending=int(counts.get(JobStatus.PENDING, 0)),
            oldest_pending_seconds=(
                max(0.0, (now - as_utc(oldest)).total_seconds()) if oldest else None
            ),
            dead_letter=int(counts.get(JobStatus.DEAD_LETTER, 0)),
            skipped_quiet_hours=int(counts.get(JobStatus.SKIPPED_QUIET_HOURS, 0)),
        )
