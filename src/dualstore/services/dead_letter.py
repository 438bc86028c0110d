"""Dead-letter inspection and manual replay into the outbox."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select

from dualstore.db.session import Database
from dualstore.db.time import utcnow
from dualstore.models import SyncDeadLetter
from dualstore.models.outbox import REPLAY_PRIORITY
from dualstore.services.outbox import Outbox, OutboxEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeadLetterRecord:
    id: int
    outbox_id: int | None
    event_type: str
    entity_type: str
    entity_id: str
    payload: dict[str, Any]
    error_message: str | None
    attempt_count: int
    replay_count: int
    created_at: datetime

    @classmethod
    def from_row(cls, row: SyncDeadLetter) -> DeadLetterRecord:
        return cls(
            id=row.id,
            outbox_id=row.outbox_id,
            event_type=row.event_type,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            payload=dict(row.payload or {}),
            error_message=row.error_message,
            attempt_count=row.attempt_count,
            replay_count=row.replay_count,
            created_at=row.created_at,
        )


def replay_idempotency_key(dead_letter_id: int, now: datetime, sequence: int) -> str:
    """Key namespaced by dead-letter id and time; never equal to an earlier attempt's."""
    epoch_ms = int(now.timestamp() * 1000)
    return f"replay:{dead_letter_id}:{epoch_ms}:{sequence}"


class DeadLetterService:
    def __init__(
        self,
        database: Database,
        outbox: Outbox,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.outbox = outbox
        self._clock = clock

    def list_dead_letters(self, limit: int = 50) -> list[DeadLetterRecord]:
        with self.database.transaction() as db:
            rows = db.scalars(
                select(SyncDeadLetter).order_by(SyncDeadLetter.id.desc()).limit(limit)
            ).all()
            return [DeadLetterRecord.from_row(row) for row in rows]

    def replay(self, dead_letter_id: int) -> bool:
        """Re-inject a dead-lettered event as a fresh, urgent outbox event.

        Returns False when no such record exists. The dead-letter row is kept
        and its replay counter bumped for audit.
        """
        now = self._clock()
        with self.database.transaction() as db:
            row = db.get(SyncDeadLetter, dead_letter_id, with_for_update=True)
            if row is None:
                return False

            sequence = row.replay_count + 1
            self.outbox.enqueue(
                OutboxEvent(
                    event_type=row.event_type,
                    entity_type=row.entity_type,
                    entity_id=row.entity_id,
                    payload=dict(row.payload or {}),
                    priority=REPLAY_PRIORITY,
                    idempotency_key=replay_idempotency_key(dead_letter_id, now, sequence),
                ),
                session=db,
            )
            row.replay_count = sequence
            row.replayed_at = now

        logger.info("Replayed dead-letter %s into the outbox", dead_letter_id)
        return True
