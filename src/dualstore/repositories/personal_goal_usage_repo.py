"""Data access helpers for personal goal usage facts."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.models import PersonalGoalUsage
from dualstore.repositories.user_repo import UserRepository
from dualstore.services.outbox import EntityType, EventType, Outbox, OutboxEvent

__all__ = ["PersonalGoalUsageRecord", "PersonalGoalUsageRepository"]


@dataclass(frozen=True)
class PersonalGoalUsageRecord:
    id: str
    user_id: str
    personal_goal_id: str
    usage_date: date
    updated_at: datetime

    @classmethod
    def from_row(cls, row: PersonalGoalUsage) -> PersonalGoalUsageRecord:
        return cls(
            id=row.id,
            user_id=row.user_id,
            personal_goal_id=row.personal_goal_id,
            usage_date=row.usage_date,
            updated_at=row.updated_at,
        )


class PersonalGoalUsageRepository:
    """Personal goal usage keyed on ``(user_id, personal_goal_id, usage_date)``."""

    def __init__(self, database: Database, outbox: Outbox, users: UserRepository) -> None:
        self.database = database
        self.outbox = outbox
        self.users = users

    def _find_row(
        self, db: Session, user_id: str, personal_goal_id: str, usage_date: date
    ) -> PersonalGoalUsage | None:
        return db.scalars(
            select(PersonalGoalUsage)
            .where(
                PersonalGoalUsage.user_id == user_id,
                PersonalGoalUsage.personal_goal_id == personal_goal_id,
                PersonalGoalUsage.usage_date == usage_date,
            )
            .limit(1)
            .execution_options(populate_existing=True)
        ).first()

    def find(
        self,
        user_id: str,
        personal_goal_id: str,
        usage_date: date,
        session: Session | None = None,
    ) -> PersonalGoalUsageRecord | None:
        with self.database.scope(session) as db:
            row = self._find_row(db, user_id, personal_goal_id, usage_date)
            return PersonalGoalUsageRecord.from_row(row) if row else None

    def counts_for_user_date(
        self, user_id: str, usage_date: date, session: Session | None = None
    ) -> dict[str, int]:
        """Usage count per goal for one user and day."""
        with self.database.scope(session) as db:
            rows = db.execute(
                select(PersonalGoalUsage.personal_goal_id, func.count())
                .where(
                    PersonalGoalUsage.user_id == user_id,
                    PersonalGoalUsage.usage_date == usage_date,
                )
                .group_by(PersonalGoalUsage.personal_goal_id)
            ).all()
            return {goal_id: int(count) for goal_id, count in rows}

    def record(
        self,
        user_id: str,
        personal_goal_id: str,
        usage_date: date,
        session: Session | None = None,
    ) -> PersonalGoalUsageRecord:
        now = utcnow()
        with self.database.scope(session) as db:
            stmt = upsert_insert(db, PersonalGoalUsage).values(
                id=str(uuid.uuid4()),
                user_id=user_id,
                personal_goal_id=personal_goal_id,
                usage_date=usage_date,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[
                    PersonalGoalUsage.user_id,
                    PersonalGoalUsage.personal_goal_id,
                    PersonalGoalUsage.usage_date,
                ],
                set_={"updated_at": now},
            )
            db.execute(stmt)
            row = self._find_row(db, user_id, personal_goal_id, usage_date)
            if row is None:
                raise LookupError(f"Personal goal usage for {user_id} vanished after upsert")

            self.users.register_activity(user_id, usage_date, session=db)
            self.outbox.enqueue(
                OutboxEvent(
                    event_type=EventType.UPSERT,
                    entity_type=EntityType.PERSONAL_GOAL_USAGE,
                    entity_id=row.id,
                    payload={
                        "userId": user_id,
                        "personalGoalId": personal_goal_id,
                        "date": usage_date.isoformat(),
                    },
                ),
                session=db,
            )
            return PersonalGoalUsageRecord.from_row(row)

    def delete(
        self,
        user_id: str,
        personal_goal_id: str,
        usage_date: date,
        session: Session | None = None,
    ) -> bool:
        with self.database.scope(session) as db:
            row = self._find_row(db, user_id, personal_goal_id, usage_date)
            if row is None:
                return False
            db.delete(row)
            db.flush()
            self.outbox.enqueue(
                OutboxEvent(
                    event_type=EventType.DELETE,
                    entity_type=EntityType.PERSONAL_GOAL_USAGE,
                    entity_id=row.id,
                ),
                session=db,
            )
            return True
