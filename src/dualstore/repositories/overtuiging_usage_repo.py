"""Data access helpers for belief ("overtuiging") completions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.errors import DuplicateCompletionError
from dualstore.models import OvertuigingUsage
from dualstore.services.outbox import EntityType, EventType, Outbox, OutboxEvent

__all__ = ["OvertuigingUsageRecord", "OvertuigingUsageRepository"]


@dataclass(frozen=True)
class OvertuigingUsageRecord:
    id: str
    user_id: str
    overtuiging_id: str
    program_id: str | None
    usage_date: date
    created_at: datetime

    @classmethod
    def from_row(cls, row: OvertuigingUsage) -> OvertuigingUsageRecord:
        return cls(
            id=row.id,
            user_id=row.user_id,
            overtuiging_id=row.overtuiging_id,
            program_id=row.program_id,
            usage_date=row.usage_date,
            created_at=row.created_at,
        )


class OvertuigingUsageRepository:
    """Belief completions, unique on ``(user_id, overtuiging_id)`` with no repetition."""

    def __init__(self, database: Database, outbox: Outbox) -> None:
        self.database = database
        self.outbox = outbox

    def _find_row(self, db: Session, user_id: str, overtuiging_id: str) -> OvertuigingUsage | None:
        return db.scalars(
            select(OvertuigingUsage)
            .where(
                OvertuigingUsage.user_id == user_id,
                OvertuigingUsage.overtuiging_id == overtuiging_id,
            )
            .limit(1)
        ).first()

    def find(
        self, user_id: str, overtuiging_id: str, session: Session | None = None
    ) -> OvertuigingUsageRecord | None:
        with self.database.scope(session) as db:
            row = self._find_row(db, user_id, overtuiging_id)
            return OvertuigingUsageRecord.from_row(row) if row else None

    def list_completed(self, user_id: str, session: Session | None = None) -> set[str]:
        with self.database.scope(session) as db:
            return set(
                db.scalars(
                    select(OvertuigingUsage.overtuiging_id).where(
                        OvertuigingUsage.user_id == user_id
                    )
                )
            )

    def list_completed_for_program(
        self, user_id: str, program_id: str, session: Session | None = None
    ) -> set[str]:
        with self.database.scope(session) as db:
            return set(
                db.scalars(
                    select(OvertuigingUsage.overtuiging_id).where(
                        OvertuigingUsage.user_id == user_id,
                        OvertuigingUsage.program_id == program_id,
                    )
                )
            )

    def create(
        self,
        user_id: str,
        overtuiging_id: str,
        usage_date: date,
        program_id: str | None = None,
        session: Session | None = None,
    ) -> OvertuigingUsageRecord:
        """Mark a belief completed.

        Raises:
            DuplicateCompletionError: the user already completed this belief.
        """
        now = utcnow()
        with self.database.scope(session) as db:
            stmt = (
                upsert_insert(db, OvertuigingUsage)
                .values(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    overtuiging_id=overtuiging_id,
                    program_id=program_id,
                    usage_date=usage_date,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(
                    index_elements=[OvertuigingUsage.user_id, OvertuigingUsage.overtuiging_id]
                )
            )
            result = db.execute(stmt)
            if result.rowcount == 0:
                raise DuplicateCompletionError(user_id, overtuiging_id)

            row = self._find_row(db, user_id, overtuiging_id)
            if row is None:
                raise LookupError(f"Belief usage for {user_id} vanished after insert")

            payload = {
                "userId": user_id,
                "overtuigingId": overtuiging_id,
                "date": usage_date.isoformat(),
            }
            if program_id:
                payload["programId"] = program_id
            self.outbox.enqueue(
                OutboxEvent(
                    event_type=EventType.UPSERT,
                    entity_type=EntityType.OVERTUIGING_USAGE,
                    entity_id=row.id,
                    payload=payload,
                ),
                session=db,
            )
            return OvertuigingUsageRecord.from_row(row)

    def delete(self, user_id: str, overtuiging_id: str, session: Session | None = None) -> bool:
        with self.database.scope(session) as db:
            row = self._find_row(db, user_id, overtuiging_id)
            if row is None:
                return False
            db.delete(row)
            db.flush()
            self.outbox.enqueue(
                OutboxEvent(
                    event_type=EventType.DELETE,
                    entity_type=EntityType.OVERTUIGING_USAGE,
                    entity_id=row.id,
                ),
                session=db,
            )
            return True
