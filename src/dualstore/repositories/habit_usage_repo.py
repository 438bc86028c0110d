"""Data access helpers for habit usage facts."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.models import HabitUsage
from dualstore.repositories.user_repo import UserRepository
from dualstore.services.outbox import EntityType, EventType, Outbox, OutboxEvent

__all__ = ["HabitUsageRecord", "HabitUsageRepository"]


@dataclass(frozen=True)
class HabitUsageRecord:
    id: str
    user_id: str
    method_id: str
    usage_date: date
    updated_at: datetime

    @classmethod
    def from_row(cls, row: HabitUsage) -> HabitUsageRecord:
        return cls(
            id=row.id,
            user_id=row.user_id,
            method_id=row.method_id,
            usage_date=row.usage_date,
            updated_at=row.updated_at,
        )


class HabitUsageRepository:
    """Habit usage keyed on ``(user_id, method_id, usage_date)``."""

    def __init__(self, database: Database, outbox: Outbox, users: UserRepository) -> None:
        self.database = database
        self.outbox = outbox
        self.users = users

    def _find_row(
        self, db: Session, user_id: str, method_id: str, usage_date: date
    ) -> HabitUsage | None:
        return db.scalars(
            select(HabitUsage)
            .where(
                HabitUsage.user_id == user_id,
                HabitUsage.method_id == method_id,
                HabitUsage.usage_date == usage_date,
            )
            .limit(1)
            .execution_options(populate_existing=True)
        ).first()

    def find(
        self, user_id: str, method_id: str, usage_date: date, session: Session | None = None
    ) -> HabitUsageRecord | None:
        with self.database.scope(session) as db:
            row = self._find_row(db, user_id, method_id, usage_date)
            return HabitUsageRecord.from_row(row) if row else None

    def list_method_ids_for_date(
        self, user_id: str, usage_date: date, session: Session | None = None
    ) -> list[str]:
        with self.database.scope(session) as db:
            return list(
                db.scalars(
                    select(HabitUsage.method_id)
                    .where(HabitUsage.user_id == user_id, HabitUsage.usage_date == usage_date)
                    .order_by(HabitUsage.method_id)
                )
            )

    def record(
        self, user_id: str, method_id: str, usage_date: date, session: Session | None = None
    ) -> HabitUsageRecord:
        """Record a habit for the day. Repeating it only refreshes ``updated_at``.

        Usage row, streak and outbox events commit together.
        """
        now = utcnow()
        with self.database.scope(session) as db:
            stmt = upsert_insert(db, HabitUsage).values(
                id=str(uuid.uuid4()),
                user_id=user_id,
                method_id=method_id,
                usage_date=usage_date,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[HabitUsage.user_id, HabitUsage.method_id, HabitUsage.usage_date],
                set_={"updated_at": now},
            )
            db.execute(stmt)
            row = self._find_row(db, user_id, method_id, usage_date)
            if row is None:
                raise LookupError(f"Habit usage for {user_id}/{method_id} vanished after upsert")

            self.users.register_activity(user_id, usage_date, session=db)
            self.outbox.enqueue(
                OutboxEvent(
                    event_type=EventType.UPSERT,
                    entity_type=EntityType.HABIT_USAGE,
                    entity_id=row.id,
                    payload={
                        "userId": user_id,
                        "methodId": method_id,
                        "date": usage_date.isoformat(),
                    },
                ),
                session=db,
            )
            return HabitUsageRecord.from_row(row)

    def delete(
        self, user_id: str, method_id: str, usage_date: date, session: Session | None = None
    ) -> bool:
        """Delete a habit usage. Returns False when there was nothing to delete."""
        with self.database.scope(session) as db:
            row = self._find_row(db, user_id, method_id, usage_date)
            if row is None:
                return False
            db.delete(row)
            db.flush()
            self.outbox.enqueue(
                OutboxEvent(
                    event_type=EventType.DELETE,
                    entity_type=EntityType.HABIT_USAGE,
                    entity_id=row.id,
                ),
                session=db,
            )
            return True
