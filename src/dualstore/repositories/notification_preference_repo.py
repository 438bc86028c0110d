"""Data access helpers for notification preferences."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, union
from sqlalchemy.orm import Session

from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.models import NotificationPreference, Program, User
from dualstore.models.program import PROGRAM_SCHEDULABLE_STATUSES
from dualstore.notifications.time import normalize_time, resolve_timezone
from dualstore.notifications.types import (
    DEFAULT_LEAD_MINUTES,
    DEFAULT_PREFERRED_TIME,
    DEFAULT_QUIET_HOURS_END,
    DEFAULT_QUIET_HOURS_START,
    NotificationPreferences,
    ReminderMode,
)

__all__ = ["PreferenceUpdate", "NotificationPreferenceRepository"]

MAX_LEAD_MINUTES = 24 * 60


def _reminder_mode(value: str | None) -> ReminderMode:
    try:
        return ReminderMode(value) if value else ReminderMode.BOTH
    except ValueError:
        return ReminderMode.BOTH


def _lead_minutes(value: int | None) -> int:
    if value is None:
        return DEFAULT_LEAD_MINUTES
    return max(0, min(int(value), MAX_LEAD_MINUTES))


@dataclass(frozen=True)
class PreferenceUpdate:
    """Partial preference change; ``None`` leaves a field as stored."""

    enabled: bool | None = None
    reminder_mode: str | None = None
    lead_minutes: int | None = None
    preferred_time_local: str | None = None
    timezone: str | None = None
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None

    def values(self) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        if self.enabled is not None:
            changes["enabled"] = self.enabled
        if self.reminder_mode is not None:
            changes["reminder_mode"] = _reminder_mode(self.reminder_mode).value
        if self.lead_minutes is not None:
            changes["lead_minutes"] = _lead_minutes(self.lead_minutes)
        for name in ("preferred_time_local", "quiet_hours_start", "quiet_hours_end"):
            value = getattr(self, name)
            if value is not None:
                changes[name] = normalize_time(value, value)
        if self.timezone is not None:
            changes["timezone"] = self.timezone
        return changes


class NotificationPreferenceRepository:
    """Stored preferences merged over defaults."""

    def __init__(self, database: Database, default_timezone: str) -> None:
        self.database = database
        self.default_timezone = default_timezone

    def _merge(self, user_id: str, row: NotificationPreference | None) -> NotificationPreferences:
        return NotificationPreferences(
            user_id=user_id,
            enabled=True if row is None or row.enabled is None else bool(row.enabled),
            reminder_mode=_reminder_mode(row.reminder_mode if row else None),
            lead_minutes=_lead_minutes(row.lead_minutes if row else None),
            preferred_time_local=normalize_time(
                row.preferred_time_local if row else None, DEFAULT_PREFERRED_TIME
            ),
            timezone=resolve_timezone(row.timezone if row else None, self.default_timezone),
            quiet_hours_start=normalize_time(
                row.quiet_hours_start if row else None, DEFAULT_QUIET_HOURS_START
            ),
            quiet_hours_end=normalize_time(
                row.quiet_hours_end if row else None, DEFAULT_QUIET_HOURS_END
            ),
        )

    def get(self, user_id: str, session: Session | None = None) -> NotificationPreferences | None:
        """Return effective preferences, or None for an unknown user."""
        with self.database.scope(session) as db:
            if db.get(User, user_id) is None:
                return None
            row = db.get(NotificationPreference, user_id, populate_existing=True)
            return self._merge(user_id, row)

    def upsert(
        self, user_id: str, update: PreferenceUpdate, session: Session | None = None
    ) -> NotificationPreferences | None:
        with self.database.scope(session) as db:
            if db.get(User, user_id) is None:
                return None
            changes = update.values()
            now = utcnow()
            stmt = upsert_insert(db, NotificationPreference).values(
                user_id=user_id, created_at=now, updated_at=now, **changes
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[NotificationPreference.user_id],
                set_={**changes, "updated_at": now},
            )
            db.execute(stmt)
            row = db.get(NotificationPreference, user_id, populate_existing=True)
            return self._merge(user_id, row)

    def get_language_code(self, user_id: str, session: Session | None = None) -> str | None:
        with self.database.scope(session) as db:
            return db.scalar(select(User.language_code).where(User.id == user_id))

    def list_users_for_planning(self, session: Session | None = None) -> list[str]:
        """Users with a schedulable program or explicitly enabled reminders."""
        with self.database.scope(session) as db:
            stmt = union(
                select(Program.user_id).where(Program.status.in_(PROGRAM_SCHEDULABLE_STATUSES)),
                select(NotificationPreference.user_id).where(
                    NotificationPreference.enabled.is_(True)
                ),
            )
            return sorted(db.scalars(stmt).all())
