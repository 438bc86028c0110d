"""Bulk copy of the legacy tables into the relational store.

Used by the backfill script and by the worker's periodic polls. Rows are
matched through the ID map (or the table's natural key for usage facts), so
re-running a sync updates in place and rows that originated on the
relational side are never duplicated. Nothing written here is enqueued in
the outbox.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.models import (
    HabitUsage,
    MethodUsage,
    OvertuigingUsage,
    PersonalGoal,
    PersonalGoalUsage,
    Program,
    ProgramSchedule,
)
from dualstore.models.program import PERSONAL_GOAL_ACTIVE_STATUS
from dualstore.repositories.user_repo import UserRepository
from dualstore.services.id_map import IdMap
from dualstore.services.legacy import LegacyRecord, LegacyStore, LegacyTable
from dualstore.services.legacy_writers import (
    MethodUsageFields,
    PersonalGoalFields,
    ProgramFields,
    ScheduleFields,
    UsageFields,
)
from dualstore.services.outbox import EntityType
from dualstore.services.read_through import profile_from_record

logger = logging.getLogger(__name__)

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_EUROPEAN_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

DEFAULT_PROGRAM_STATUS = "Actief"


def parse_legacy_date(value: Any) -> date | None:
    """Accept ``YYYY-MM-DD`` (optionally followed by a time) or ``DD/MM/YYYY``."""
    if not value:
        return None
    text = str(value).strip()
    iso = _ISO_DATE_RE.match(text)
    if iso:
        year, month, day = iso.groups()
    else:
        european = _EUROPEAN_DATE_RE.match(text)
        if not european:
            return None
        day, month, year = european.groups()
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def first_link(fields: Mapping[str, Any], name: str) -> str | None:
    """First record id of a link field; links arrive as lists of ids."""
    value = fields.get(name)
    if isinstance(value, list | tuple):
        value = value[0] if value else None
    return str(value) if value else None


def link_list(fields: Mapping[str, Any], name: str) -> list[str]:
    value = fields.get(name)
    if isinstance(value, list | tuple):
        return [str(item) for item in value if item]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


@dataclass
class FullSyncCounts:
    users: int = 0
    personal_goals: int = 0
    programs: int = 0
    schedules: int = 0
    method_usage: int = 0
    habit_usage: int = 0
    personal_goal_usage: int = 0
    overtuiging_usage: int = 0
    skipped: int = 0


class LegacyFullSync:
    """Pulls every legacy table the relational store mirrors."""

    def __init__(
        self,
        database: Database,
        legacy: LegacyStore,
        users: UserRepository,
        id_map: IdMap,
        *,
        today: Callable[[], date] = lambda: utcnow().date(),
    ) -> None:
        self.database = database
        self.legacy = legacy
        self.users = users
        self.id_map = id_map
        self._today = today

    async def run(self) -> FullSyncCounts:
        """Sync all tables, parents before the rows that reference them."""
        counts = FullSyncCounts()
        counts.users = await self.sync_users(counts)
        counts.personal_goals = await self.sync_personal_goals(counts)
        counts.programs = await self.sync_programs(counts)
        counts.schedules = await self.sync_program_schedules(counts)
        counts.method_usage = await self.sync_method_usage(counts)
        counts.habit_usage = await self.sync_habit_usage(counts)
        counts.personal_goal_usage = await self.sync_personal_goal_usage(counts)
        counts.overtuiging_usage = await self.sync_overtuiging_usage(counts)
        logger.info("Full legacy sync finished: %s", counts)
        return counts

    # Helpers

    async def _each(
        self,
        table: str,
        apply: Callable[[Session, LegacyRecord], bool],
        counts: FullSyncCounts | None,
    ) -> int:
        """Apply ``apply`` to every record of ``table``, one transaction per record."""
        synced = 0
        for record in await self.legacy.list_records(table):
            with self.database.transaction() as db:
                applied = apply(db, record)
            if applied:
                synced += 1
            elif counts is not None:
                counts.skipped += 1
        return synced

    def _relational_user(self, db: Session, fields: Mapping[str, Any], name: str) -> str | None:
        legacy_user = first_link(fields, name)
        if legacy_user is None:
            return None
        return self.id_map.find_relational_id(EntityType.USER.value, legacy_user, session=db)

    def _resolve(self, db: Session, entity_type: EntityType, legacy_id: str | None) -> str | None:
        """Relational id for a linked record, or the legacy id when it is not mapped."""
        if legacy_id is None:
            return None
        mapped = self.id_map.find_relational_id(entity_type.value, legacy_id, session=db)
        return mapped or legacy_id

    def _upsert_mapped(
        self,
        db: Session,
        model: Any,
        entity_type: EntityType,
        legacy_id: str,
        values: Mapping[str, Any],
    ) -> str:
        """Update the row mapped to ``legacy_id`` or insert and map a new one."""
        relational_id = self.id_map.find_relational_id(entity_type.value, legacy_id, session=db)
        row = db.get(model, relational_id) if relational_id else None
        if row is None:
            row = model(id=str(uuid.uuid4()), **values)
            db.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)
        db.flush()
        self.id_map.upsert(entity_type.value, row.id, legacy_id, session=db)
        return row.id

    def _upsert_natural(
        self,
        db: Session,
        model: Any,
        entity_type: EntityType,
        legacy_id: str,
        keys: Mapping[str, Any],
        values: Mapping[str, Any] | None = None,
    ) -> str:
        """Upsert a usage fact on its natural key, then map it."""
        now = utcnow()
        extra = dict(values or {})
        stmt = upsert_insert(db, model).values(
            id=str(uuid.uuid4()), created_at=now, updated_at=now, **keys, **extra
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[getattr(model, key) for key in keys],
            set_={**extra, "updated_at": now},
        )
        db.execute(stmt)
        row_id = db.scalars(select(model.id).filter_by(**keys).limit(1)).one()
        self.id_map.upsert(entity_type.value, row_id, legacy_id, session=db)
        return row_id

    # Tables

    async def sync_users(self, counts: FullSyncCounts | None = None) -> int:
        def apply(db: Session, record: LegacyRecord) -> bool:
            profile = profile_from_record(record)
            if profile is None:
                return False
            self.users.upsert_from_legacy(profile, session=db)
            return True

        return await self._each(LegacyTable.USERS, apply, counts)

    async def sync_personal_goals(self, counts: FullSyncCounts | None = None) -> int:
        def apply(db: Session, record: LegacyRecord) -> bool:
            fields = record.fields
            user_id = self._relational_user(db, fields, PersonalGoalFields.USER)
            if user_id is None:
                return False
            self._upsert_mapped(
                db,
                PersonalGoal,
                EntityType.PERSONAL_GOAL,
                record.id,
                {
                    "user_id": user_id,
                    "name": str(fields.get(PersonalGoalFields.NAME) or "Persoonlijk doel"),
                    "status": str(
                        fields.get(PersonalGoalFields.STATUS) or PERSONAL_GOAL_ACTIVE_STATUS
                    ),
                    "schedule_days": link_list(fields, PersonalGoalFields.SCHEDULE_DAYS),
                },
            )
            return True

        return await self._each(LegacyTable.PERSONAL_GOALS, apply, counts)

    async def sync_programs(self, counts: FullSyncCounts | None = None) -> int:
        def apply(db: Session, record: LegacyRecord) -> bool:
            fields = record.fields
            user_id = self._relational_user(db, fields, ProgramFields.USER)
            if user_id is None:
                return False
            self._upsert_mapped(
                db,
                Program,
                EntityType.PROGRAM,
                record.id,
                {
                    "user_id": user_id,
                    "status": str(fields.get(ProgramFields.STATUS) or DEFAULT_PROGRAM_STATUS),
                    "start_date": parse_legacy_date(fields.get(ProgramFields.START_DATE)),
                },
            )
            return True

        return await self._each(LegacyTable.PROGRAMS, apply, counts)

    async def sync_program_schedules(self, counts: FullSyncCounts | None = None) -> int:
        def apply(db: Session, record: LegacyRecord) -> bool:
            fields = record.fields
            legacy_program = first_link(fields, ScheduleFields.PROGRAM)
            if legacy_program is None:
                return False
            program_id = self.id_map.find_relational_id(
                EntityType.PROGRAM.value, legacy_program, session=db
            )
            if program_id is None:
                return False
            self._upsert_mapped(
                db,
                ProgramSchedule,
                EntityType.PROGRAM_SCHEDULE,
                record.id,
                {
                    "program_id": program_id,
                    "session_date": parse_legacy_date(fields.get(ScheduleFields.DATE)),
                    "method_ids": link_list(fields, ScheduleFields.METHODS),
                },
            )
            return True

        return await self._each(LegacyTable.PROGRAM_SCHEDULE, apply, counts)

    async def sync_method_usage(self, counts: FullSyncCounts | None = None) -> int:
        def apply(db: Session, record: LegacyRecord) -> bool:
            fields = record.fields
            user_id = self._relational_user(db, fields, MethodUsageFields.USER)
            method_id = first_link(fields, MethodUsageFields.METHOD)
            if user_id is None or method_id is None:
                return False
            legacy_schedule = first_link(fields, MethodUsageFields.PROGRAM_SCHEDULE)
            schedule_id = None
            if legacy_schedule is not None:
                schedule_id = self.id_map.find_relational_id(
                    EntityType.PROGRAM_SCHEDULE.value, legacy_schedule, session=db
                )
            used_at = parse_legacy_date(fields.get(MethodUsageFields.USED_AT)) or self._today()
            self._upsert_mapped(
                db,
                MethodUsage,
                EntityType.METHOD_USAGE,
                record.id,
                {
                    "user_id": user_id,
                    "method_id": method_id,
                    "program_schedule_id": schedule_id,
                    "usage_date": used_at,
                },
            )
            return True

        return await self._each(LegacyTable.METHOD_USAGE, apply, counts)

    async def sync_habit_usage(self, counts: FullSyncCounts | None = None) -> int:
        def apply(db: Session, record: LegacyRecord) -> bool:
            fields = record.fields
            user_id = self._relational_user(db, fields, UsageFields.USER)
            method_id = first_link(fields, UsageFields.METHOD)
            usage_date = parse_legacy_date(fields.get(UsageFields.DATE))
            if user_id is None or method_id is None or usage_date is None:
                return False
            self._upsert_natural(
                db,
                HabitUsage,
                EntityType.HABIT_USAGE,
                record.id,
                {"user_id": user_id, "method_id": method_id, "usage_date": usage_date},
            )
            return True

        return await self._each(LegacyTable.HABIT_USAGE, apply, counts)

    async def sync_personal_goal_usage(self, counts: FullSyncCounts | None = None) -> int:
        def apply(db: Session, record: LegacyRecord) -> bool:
            fields = record.fields
            user_id = self._relational_user(db, fields, UsageFields.USER)
            goal_id = self._resolve(
                db, EntityType.PERSONAL_GOAL, first_link(fields, UsageFields.PERSONAL_GOAL)
            )
            usage_date = parse_legacy_date(fields.get(UsageFields.DATE))
            if user_id is None or goal_id is None or usage_date is None:
                return False
            self._upsert_natural(
                db,
                PersonalGoalUsage,
                EntityType.PERSONAL_GOAL_USAGE,
                record.id,
                {"user_id": user_id, "personal_goal_id": goal_id, "usage_date": usage_date},
            )
            return True

        return await self._each(LegacyTable.PERSONAL_GOAL_USAGE, apply, counts)

    async def sync_overtuiging_usage(self, counts: FullSyncCounts | None = None) -> int:
        def apply(db: Session, record: LegacyRecord) -> bool:
            fields = record.fields
            user_id = self._relational_user(db, fields, UsageFields.USER)
            overtuiging_id = first_link(fields, UsageFields.OVERTUIGING)
            if user_id is None or overtuiging_id is None:
                return False
            self._upsert_natural(
                db,
                OvertuigingUsage,
                EntityType.OVERTUIGING_USAGE,
                record.id,
                {"user_id": user_id, "overtuiging_id": overtuiging_id},
                {
                    "program_id": self._resolve(
                        db, EntityType.PROGRAM, first_link(fields, UsageFields.PROGRAM)
                    ),
                    "usage_date": (
                        parse_legacy_date(fields.get(UsageFields.DATE)) or self._today()
                    ),
                },
            )
            return True

        return await self._each(LegacyTable.OVERTUIGING_USAGE, apply, counts)
