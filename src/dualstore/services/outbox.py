"""Transactional outbox propagating relational writes to the legacy store.

Each event moves through an explicit state machine::

    pending -> processing -> done
                          -> pending (retry, exponential backoff)
                          -> dead_letter

A drain worker claims events with a conditional status transition, so two
concurrent workers never deliver the same event. Enqueue is idempotent on
``idempotency_key``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dualstore.core.settings import Settings, settings
from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.errors import (
    LegacyStoreDisabledError,
    LegacyStoreError,
    LegacyStoreUnavailableError,
    UnsupportedEntityError,
)
from dualstore.models import OutboxStatus, SyncDeadLetter, SyncOutbox
from dualstore.models.outbox import DEFAULT_PRIORITY

if TYPE_CHECKING:
    from dualstore.services.legacy_writers import LegacyWriter

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000
HTTP_REQUEST_TIMEOUT = 408
HTTP_TOO_MANY_REQUESTS = 429


class EntityType(str, Enum):
    """Entities whose changes are propagated to the legacy store."""

    PROGRAM = "program"
    PROGRAM_SCHEDULE = "program_schedule"
    METHOD_USAGE = "method_usage"
    HABIT_USAGE = "habit_usage"
    PERSONAL_GOAL = "personal_goal"
    PERSONAL_GOAL_USAGE = "personal_goal_usage"
    OVERTUIGING_USAGE = "overtuiging_usage"
    PERSOONLIJKE_OVERTUIGING = "persoonlijke_overtuiging"
    USER = "user"


class EventType(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class OutboxEvent:
    """A change to enqueue. Leave ``idempotency_key`` unset to derive it."""

    event_type: EventType
    entity_type: EntityType
    entity_id: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY
    idempotency_key: str | None = None


@dataclass(frozen=True)
class ClaimedEvent:
    """An outbox row claimed by this worker for delivery."""

    id: int
    event_type: str
    entity_type: str
    entity_id: str
    payload: dict[str, Any]
    attempt_count: int

    @classmethod
    def from_row(cls, row: SyncOutbox) -> ClaimedEvent:
        return cls(
            id=row.id,
            event_type=row.event_type,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            payload=dict(row.payload or {}),
            attempt_count=row.attempt_count,
        )


@dataclass
class DrainResult:
    claimed: int = 0
    delivered: int = 0
    retried: int = 0
    dead_lettered: int = 0


def canonical_json(payload: Mapping[str, Any]) -> str:
    """Serialize with sorted keys and no whitespace so equal payloads hash equally."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def derive_idempotency_key(
    event_type: str, entity_type: str, entity_id: str, payload: Mapping[str, Any]
) -> str:
    """Deterministic key for one logical change."""
    digest = hashlib.sha256(
        f"{event_type}:{entity_type}:{entity_id}:{canonical_json(payload)}".encode()
    ).hexdigest()
    return f"{event_type}:{entity_type}:{entity_id}:{digest[:32]}"


def compute_backoff_seconds(attempt_count: int, base_seconds: int, max_seconds: int) -> int:
    """Exponential backoff as a pure function of the attempt count."""
    exponent = max(0, attempt_count - 1)
    return int(min(base_seconds * (2**exponent), max_seconds))


def is_permanent_failure(error: Exception) -> bool:
    """Errors that will fail identically on every retry."""
    if isinstance(error, UnsupportedEntityError):
        return True
    if isinstance(error, LegacyStoreError) and not isinstance(error, LegacyStoreUnavailableError):
        status = error.status_code
        return status is not None and 400 <= status < 500 and status not in (
            HTTP_REQUEST_TIMEOUT,
            HTTP_TOO_MANY_REQUESTS,
        )
    return False


class Outbox:
    """Enqueue and drain operations over the ``sync_outbox`` table."""

    def __init__(
        self,
        database: Database,
        *,
        max_retries: int = 6,
        retry_base_seconds: int = 5,
        retry_max_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, database: Database, config: Settings = settings) -> Outbox:
        return cls(
            database,
            max_retries=config.sync_max_retries,
            retry_base_seconds=config.sync_retry_base_seconds,
            retry_max_seconds=config.sync_retry_max_seconds,
        )

    # Enqueue

    def enqueue(self, event: OutboxEvent, session: Session | None = None) -> None:
        """Persist ``event`` as pending. A duplicate idempotency key is silently dropped.

        Pass the session of an open transaction to commit the event atomically
        with the row change that caused it.
        """
        payload = dict(event.payload)
        event_type = EventType(event.event_type).value
        entity_type = EntityType(event.entity_type).value
        key = event.idempotency_key or derive_idempotency_key(
            event_type, entity_type, event.entity_id, payload
        )
        now = self._clock()

        with self.database.scope(session) as db:
            stmt = (
                upsert_insert(db, SyncOutbox)
                .values(
                    event_type=event_type,
                    entity_type=entity_type,
                    entity_id=event.entity_id,
                    payload=payload,
                    priority=event.priority,
                    idempotency_key=key,
                    status=OutboxStatus.PENDING,
                    attempt_count=0,
                    next_attempt_at=now,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=[SyncOutbox.idempotency_key])
            )
            db.execute(stmt)

    # Drain

    def claim_batch(self, limit: int) -> list[ClaimedEvent]:
        """Claim up to ``limit`` due events, moving each to ``processing``.

        A row is returned only if this call's conditional update moved it out
        of ``pending``; rows claimed concurrently elsewhere are skipped.
        """
        if limit <= 0:
            return []

        now = self._clock()
        with self.database.transaction() as db:
            candidate_ids = db.scalars(
                select(SyncOutbox.id)
                .where(
                    SyncOutbox.status == OutboxStatus.PENDING,
                    SyncOutbox.next_attempt_at <= now,
                )
                .order_by(
                    SyncOutbox.priority.asc(),
                    SyncOutbox.created_at.asc(),
                    SyncOutbox.id.asc(),
                )
                .limit(limit)
                .with_for_update(skip_locked=True)
            ).all()

            claimed_ids: list[int] = []
            for event_id in candidate_ids:
                result = db.execute(
                    update(SyncOutbox)
                    .where(SyncOutbox.id == event_id, SyncOutbox.status == OutboxStatus.PENDING)
                    .values(
                        status=OutboxStatus.PROCESSING,
                        attempt_count=SyncOutbox.attempt_count + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed_ids.append(event_id)

            if not claimed_ids:
                return []

            rows = db.scalars(
                select(SyncOutbox)
                .where(SyncOutbox.id.in_(claimed_ids))
                .order_by(
                    SyncOutbox.priority.asc(),
                    SyncOutbox.created_at.asc(),
                    SyncOutbox.id.asc(),
                )
            ).all()
            return [ClaimedEvent.from_row(row) for row in rows]

    def mark_done(self, event_id: int) -> None:
        now = self._clock()
        with self.database.transaction() as db:
            db.execute(
                update(SyncOutbox)
                .where(SyncOutbox.id == event_id, SyncOutbox.status == OutboxStatus.PROCESSING)
                .values(
                    status=OutboxStatus.DONE,
                    processed_at=now,
                    last_error=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

    def mark_retry(self, event: ClaimedEvent, error_message: str) -> datetime:
        """Return the event to ``pending`` with its next attempt pushed out."""
        now = self._clock()
        delay = compute_backoff_seconds(
            event.attempt_count, self.retry_base_seconds, self.retry_max_seconds
        )
        next_attempt_at = now + timedelta(seconds=delay)
        with self.database.transaction() as db:
            db.execute(
                update(SyncOutbox)
                .where(SyncOutbox.id == event.id, SyncOutbox.status == OutboxStatus.PROCESSING)
                .values(
                    status=OutboxStatus.PENDING,
                    next_attempt_at=next_attempt_at,
                    last_error=error_message[:MAX_ERROR_LENGTH],
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        return next_attempt_at

    def move_to_dead_letter(self, event: ClaimedEvent, error_message: str) -> None:
        """Record the event in the dead-letter store and stop retrying it."""
        now = self._clock()
        message = error_message[:MAX_ERROR_LENGTH]
        with self.database.transaction() as db:
            db.add(
                SyncDeadLetter(
                    outbox_id=event.id,
                    event_type=event.event_type,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    payload=dict(event.payload),
                    error_message=message,
                    attempt_count=event.attempt_count,
                    created_at=now,
                    updated_at=now,
                )
            )
            db.execute(
                update(SyncOutbox)
                .where(SyncOutbox.id == event.id)
                .values(
                    status=OutboxStatus.DEAD_LETTER,
                    processed_at=now,
                    last_error=message,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

    def record_failure(self, event: ClaimedEvent, error: Exception) -> str:
        """Apply the retry-or-dead-letter transition. Returns the new status."""
        message = str(error) or error.__class__.__name__
        if is_permanent_failure(error) or event.attempt_count >= self.max_retries:
            self.move_to_dead_letter(event, message)
            logger.error(
                "Outbox event %s (%s %s/%s) dead-lettered after %d attempt(s): %s",
                event.id,
                event.event_type,
                event.entity_type,
                event.entity_id,
                event.attempt_count,
                message,
            )
            return OutboxStatus.DEAD_LETTER

        next_attempt_at = self.mark_retry(event, message)
        logger.warning(
            "Outbox event %s failed (attempt %d), retrying at %s: %s",
            event.id,
            event.attempt_count,
            next_attempt_at.isoformat(),
            message,
        )
        return OutboxStatus.PENDING

    def release_stale_claims(self, older_than: timedelta) -> int:
        """Return events stuck in ``processing`` (e.g. after a crash) to ``pending``."""
        now = self._clock()
        cutoff = now - older_than
        with self.database.transaction() as db:
            result = db.execute(
                update(SyncOutbox)
                .where(
                    SyncOutbox.status == OutboxStatus.PROCESSING,
                    SyncOutbox.updated_at < cutoff,
                )
                .values(status=OutboxStatus.PENDING, next_attempt_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            released = result.rowcount or 0
        if released:
            logger.warning("Released %d stale outbox claim(s)", released)
        return released

    def release_claims(self, events: Sequence[ClaimedEvent]) -> int:
        """Return claimed events to ``pending`` now and give back the attempt each claim used."""
        if not events:
            return 0
        now = self._clock()
        with self.database.transaction() as db:
            result = db.execute(
                update(SyncOutbox)
                .where(
                    SyncOutbox.id.in_([event.id for event in events]),
                    SyncOutbox.status == OutboxStatus.PROCESSING,
                )
                .values(
                    status=OutboxStatus.PENDING,
                    attempt_count=SyncOutbox.attempt_count - 1,
                    next_attempt_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            released = result.rowcount or 0
        if released:
            logger.warning("Released %d unprocessed outbox claim(s)", released)
        return released

    async def process_batch(self, writer: LegacyWriter, limit: int) -> DrainResult:
        """Claim due events and deliver each one through ``writer``.

        If the drain is interrupted (missing legacy credentials, cancellation)
        the events it has not finished go straight back to ``pending``.
        """
        result = DrainResult()
        events = self.claim_batch(limit)
        result.claimed = len(events)

        unprocessed = list(events)
        try:
            for event in events:
                try:
                    await writer.write(event)
                except LegacyStoreDisabledError:
                    raise
                except Exception as exc:
                    status = self.record_failure(event, exc)
                    if status == OutboxStatus.DEAD_LETTER:
                        result.dead_lettered += 1
                    else:
                        result.retried += 1
                else:
                    self.mark_done(event.id)
                    result.delivered += 1
                unprocessed.pop(0)
        finally:
            self.release_claims(unprocessed)

        if result.claimed:
            logger.info(
                "Outbox batch: claimed=%d delivered=%d retried=%d dead_lettered=%d",
                result.claimed,
                result.delivered,
                result.retried,
                result.dead_lettered,
            )
        return result
