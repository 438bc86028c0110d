"""Data access helpers for relational user rows."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dualstore.db.ids import is_legacy_record_id
from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.models import User, UserStatus
from dualstore.services.id_map import IdMap
from dualstore.services.outbox import EntityType, EventType, Outbox, OutboxEvent
from dualstore.services.streak import StreakState, next_streak

__all__ = ["LegacyUserProfile", "UserRecord", "UserRepository"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    name: str | None
    role: str | None
    language_code: str | None
    status: str
    current_streak: int
    longest_streak: int
    last_active_date: date | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: User) -> UserRecord:
        return cls(
            id=row.id,
            email=row.email,
            name=row.name,
            role=row.role,
            language_code=row.language_code,
            status=row.status,
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            last_active_date=row.last_active_date,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


@dataclass(frozen=True)
class LegacyUserProfile:
    """User fields as known to the legacy store."""

    legacy_id: str
    email: str
    name: str | None = None
    role: str | None = None
    language_code: str | None = None
    password_hash: str | None = None
    status: str = UserStatus.ACTIVE


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    """User reads, legacy materialization and streak bookkeeping."""

    def __init__(self, database: Database, id_map: IdMap, outbox: Outbox) -> None:
        self.database = database
        self.id_map = id_map
        self.outbox = outbox

    def _get_row(self, db: Session, user_id: str) -> User | None:
        """Load a user by relational id or by mapped legacy id."""
        relational_id: str | None = user_id
        if is_legacy_record_id(user_id):
            relational_id = self.id_map.find_relational_id(
                EntityType.USER.value, user_id, session=db
            )
        if relational_id is None:
            return None
        return db.get(User, relational_id, populate_existing=True)

    def find_by_id(self, user_id: str, session: Session | None = None) -> UserRecord | None:
        """Return a user by either identifier form."""
        with self.database.scope(session) as db:
            row = self._get_row(db, user_id)
            return UserRecord.from_row(row) if row else None

    def find_by_email(self, email: str, session: Session | None = None) -> UserRecord | None:
        with self.database.scope(session) as db:
            row = db.scalars(
                select(User)
                .where(func.lower(User.email) == normalize_email(email))
                .limit(1)
                .execution_options(populate_existing=True)
            ).first()
            return UserRecord.from_row(row) if row else None

    def upsert_from_legacy(
        self, profile: LegacyUserProfile, session: Session | None = None
    ) -> UserRecord:
        """Write a legacy user into the relational store and map its id.

        A row already mapped to ``profile.legacy_id`` is updated in place;
        otherwise the insert is keyed on email with last-write-wins so a
        concurrent writer for the same user never causes a conflict error.
        """
        email = normalize_email(profile.email)
        now = utcnow()
        values = {
            "name": profile.name,
            "role": profile.role,
            "language_code": profile.language_code,
            "password_hash": profile.password_hash,
            "status": profile.status,
            "updated_at": now,
        }

        with self.database.scope(session) as db:
            row = self._get_row(db, profile.legacy_id)
            if row is not None:
                row.email = email
                for key, value in values.items():
                    setattr(row, key, value)
                db.flush()
            else:
                stmt = upsert_insert(db, User).values(
                    id=str(uuid.uuid4()),
                    email=email,
                    created_at=now,
                    current_streak=0,
                    longest_streak=0,
                    **values,
                )
                stmt = stmt.on_conflict_do_update(index_elements=[User.email], set_=values)
                db.execute(stmt)
                row = db.scalars(
                    select(User)
                    .where(User.email == email)
                    .execution_options(populate_existing=True)
                ).one()

            self.id_map.upsert(EntityType.USER.value, row.id, profile.legacy_id, session=db)
            return UserRecord.from_row(row)

    def mark_deleted(self, user_id: str, session: Session | None = None) -> bool:
        with self.database.scope(session) as db:
            row = self._get_row(db, user_id)
            if row is None or row.status == UserStatus.DELETED:
                return False
            row.status = UserStatus.DELETED
            row.updated_at = utcnow()
            db.flush()
            return True

    def register_activity(
        self, user_id: str, activity_date: date, session: Session | None = None
    ) -> StreakState | None:
        """Advance the user's streak for activity on ``activity_date``.

        The streak change and its outbox event join the caller's transaction.
        Returns None when the user has no relational row yet.
        """
        with self.database.scope(session) as db:
            row = self._get_row(db, user_id)
            if row is None:
                logger.debug("No relational user for %s, streak not updated", user_id)
                return None

            state = next_streak(
                row.last_active_date, row.current_streak, row.longest_streak, activity_date
            )
            moved_forward = row.last_active_date is None or activity_date > row.last_active_date
            if (
                state.current_streak == row.current_streak
                and state.longest_streak == row.longest_streak
                and not moved_forward
            ):
                return state

            row.current_streak = state.current_streak
            row.longest_streak = state.longest_streak
            if moved_forward:
                row.last_active_date = activity_date
            row.updated_at = utcnow()
            db.flush()

            self.outbox.enqueue(
                OutboxEvent(
                    event_type=EventType.UPSERT,
                    entity_type=EntityType.USER,
                    entity_id=row.id,
                    payload={
                        "userId": row.id,
                        "currentStreak": row.current_streak,
                        "longestStreak": row.longest_streak,
                        "lastActiveDate": (
                            row.last_active_date.isoformat() if row.last_active_date else None
                        ),
                    },
                ),
                session=db,
            )
            return state
