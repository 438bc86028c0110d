"""Translate claimed outbox events into legacy store writes.

Creates record the new legacy id in the ID map; later upserts of the same
entity become updates of that record. References to other entities are
resolved through the ID map, and a reference that has not been propagated
yet raises ``RetryableSyncError`` so the event is retried later.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from dualstore.db.ids import is_legacy_record_id
from dualstore.errors import RetryableSyncError, UnsupportedEntityError
from dualstore.services.id_map import IdMap
from dualstore.services.legacy import LegacyStore, LegacyTable
from dualstore.services.outbox import ClaimedEvent, EntityType, EventType

logger = logging.getLogger(__name__)


class UserFields:
    NAME = "Naam"
    EMAIL = "E-mailadres"
    PASSWORD_HASH = "Paswoord Hash"
    ROLE = "Rol"
    LANGUAGE_CODE = "Taalcode"
    STATUS = "Status"
    CURRENT_STREAK = "Huidige Streak"
    LONGEST_STREAK = "Langste Streak"
    LAST_ACTIVE_DATE = "Laatste Actieve Dag"
    LAST_LOGIN = "Laatste login"
    BONUS_POINTS = "Bonus Punten"
    BADGES = "Badges"
    LEVEL = "Niveau"


class ProgramFields:
    USER = "Gebruiker"
    START_DATE = "Startdatum"
    DURATION = "Duur van programma"
    STATUS = "Status"
    CREATION_TYPE = "Type creatie"
    DAYS_OF_WEEK = "Dagen van de week"
    GOALS = "Doelstellingen"
    METHODS = "Mentale methode"
    NOTES = "Notities"


class ScheduleFields:
    PROGRAM = "Mentale Fitnessprogramma"
    DATE = "Datum"
    METHODS = "Beoogde methodes"
    GOALS = "Doelstelling(en)"
    NOTES = "Opmerkingen"
    SESSION_DESCRIPTION = "Beschrijving van sessie(s)"


class MethodUsageFields:
    USER = "Gebruiker"
    METHOD = "Methode"
    PROGRAM_SCHEDULE = "Programmaplanning"
    PROGRAM = "Mentale Fitnessprogramma's"
    USED_AT = "Gebruikt op"
    REMARK = "Opmerking"


class UsageFields:
    """Shared by the habit, personal-goal and belief usage tables."""

    USER = "Gebruikers"
    DATE = "Datum"
    METHOD = "Methodes"
    PERSONAL_GOAL = "Persoonlijke doelen"
    OVERTUIGING = "Overtuigingen"
    PROGRAM = "Mentale Fitnessprogramma's"


class PersonalGoalFields:
    USER = "Gebruikers"
    NAME = "Naam"
    STATUS = "Status"
    DESCRIPTION = "Beschrijving"
    SCHEDULE_DAYS = "Planning dagen"


class PersoonlijkeOvertuigingFields:
    USER = "Gebruikers"
    NAME = "Naam"
    STATUS = "Status"
    COMPLETED_DATE = "Datum afgerond"
    PROGRAM = "Mentale Fitnessprogramma's"


TABLE_BY_ENTITY: dict[str, str] = {
    EntityType.PROGRAM.value: LegacyTable.PROGRAMS,
    EntityType.PROGRAM_SCHEDULE.value: LegacyTable.PROGRAM_SCHEDULE,
    EntityType.METHOD_USAGE.value: LegacyTable.METHOD_USAGE,
    EntityType.HABIT_USAGE.value: LegacyTable.HABIT_USAGE,
    EntityType.PERSONAL_GOAL.value: LegacyTable.PERSONAL_GOALS,
    EntityType.PERSONAL_GOAL_USAGE.value: LegacyTable.PERSONAL_GOAL_USAGE,
    EntityType.OVERTUIGING_USAGE.value: LegacyTable.OVERTUIGING_USAGE,
    EntityType.PERSOONLIJKE_OVERTUIGING.value: LegacyTable.PERSOONLIJKE_OVERTUIGINGEN,
    EntityType.USER.value: LegacyTable.USERS,
}

# Streak and reward fields the relational side owns; everything else on the
# legacy user row is left untouched.
USER_PAYLOAD_FIELDS: dict[str, str] = {
    "currentStreak": UserFields.CURRENT_STREAK,
    "longestStreak": UserFields.LONGEST_STREAK,
    "lastActiveDate": UserFields.LAST_ACTIVE_DATE,
    "lastLogin": UserFields.LAST_LOGIN,
    "bonusPoints": UserFields.BONUS_POINTS,
    "badges": UserFields.BADGES,
    "level": UserFields.LEVEL,
}


def _non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


class LegacyWriter:
    """Delivers one outbox event to the legacy store."""

    def __init__(self, store: LegacyStore, id_map: IdMap) -> None:
        self.store = store
        self.id_map = id_map
        self._upserts: dict[str, Callable[[str, Mapping[str, Any]], Awaitable[None]]] = {
            EntityType.PROGRAM.value: self._upsert_program,
            EntityType.PROGRAM_SCHEDULE.value: self._upsert_program_schedule,
            EntityType.METHOD_USAGE.value: self._upsert_method_usage,
            EntityType.HABIT_USAGE.value: self._upsert_habit_usage,
            EntityType.PERSONAL_GOAL.value: self._upsert_personal_goal,
            EntityType.PERSONAL_GOAL_USAGE.value: self._upsert_personal_goal_usage,
            EntityType.OVERTUIGING_USAGE.value: self._upsert_overtuiging_usage,
            EntityType.PERSOONLIJKE_OVERTUIGING.value: self._upsert_persoonlijke_overtuiging,
            EntityType.USER.value: self._upsert_user,
        }

    async def write(self, event: ClaimedEvent) -> None:
        if event.event_type == EventType.DELETE.value:
            await self._delete(event.entity_type, event.entity_id)
            return

        handler = self._upserts.get(event.entity_type)
        if handler is None:
            raise UnsupportedEntityError(f"Unsupported outbox entity type: {event.entity_type}")
        await handler(event.entity_id, event.payload)

    # Helpers

    def _resolve_reference(self, entity_type: EntityType, value: Any) -> str | None:
        """Map a referenced relational id to its legacy id."""
        if not value:
            return None
        reference = str(value)
        if is_legacy_record_id(reference):
            return reference
        mapped = self.id_map.find_legacy_id(entity_type.value, reference)
        if mapped is None:
            raise RetryableSyncError(f"{entity_type.value} mapping missing for {reference}")
        return mapped

    async def _create_or_update(
        self,
        entity_type: EntityType,
        entity_id: str,
        fields: dict[str, Any],
        *,
        create_defaults: Mapping[str, Any] | None = None,
    ) -> None:
        table = TABLE_BY_ENTITY[entity_type.value]
        existing = self.id_map.find_legacy_id(entity_type.value, entity_id)
        if existing:
            await self.store.update_record(table, existing, fields)
            return

        for name, default in (create_defaults or {}).items():
            if not fields.get(name):
                fields[name] = default
        record = await self.store.create_record(table, fields)
        self.id_map.upsert(entity_type.value, entity_id, record.id)
        logger.debug("Created legacy %s %s for %s", entity_type.value, record.id, entity_id)

    # Upserts

    async def _upsert_program(self, entity_id: str, payload: Mapping[str, Any]) -> None:
        fields: dict[str, Any] = {
            ProgramFields.USER: [self._resolve_reference(EntityType.USER, payload.get("userId"))],
            ProgramFields.START_DATE: payload.get("startDate"),
            ProgramFields.DURATION: payload.get("duration"),
            ProgramFields.STATUS: payload.get("status") or "Actief",
            ProgramFields.CREATION_TYPE: payload.get("creationType") or "Manueel",
        }
        for key, name in (
            ("daysOfWeek", ProgramFields.DAYS_OF_WEEK),
            ("goals", ProgramFields.GOALS),
            ("methods", ProgramFields.METHODS),
        ):
            if _non_empty_list(payload.get(key)):
                fields[name] = payload[key]
        if payload.get("notes"):
            fields[ProgramFields.NOTES] = payload["notes"]

        await self._create_or_update(EntityType.PROGRAM, entity_id, fields)

    async def _upsert_program_schedule(self, entity_id: str, payload: Mapping[str, Any]) -> None:
        program_id = self._resolve_reference(EntityType.PROGRAM, payload.get("programId"))

        fields: dict[str, Any] = {}
        if program_id:
            fields[ScheduleFields.PROGRAM] = [program_id]
        if payload.get("date"):
            fields[ScheduleFields.DATE] = payload["date"]
        if isinstance(payload.get("methods"), list):
            fields[ScheduleFields.METHODS] = payload["methods"]
        if isinstance(payload.get("goals"), list):
            fields[ScheduleFields.GOALS] = payload["goals"]
        if "notes" in payload:
            fields[ScheduleFields.NOTES] = payload["notes"]
        if payload.get("sessionDescription"):
            fields[ScheduleFields.SESSION_DESCRIPTION] = payload["sessionDescription"]

        existing = self.id_map.find_legacy_id(EntityType.PROGRAM_SCHEDULE.value, entity_id)
        if existing is None and program_id is None:
            raise RetryableSyncError(f"Program mapping missing for schedule {entity_id}")
        await self._create_or_update(EntityType.PROGRAM_SCHEDULE, entity_id, fields)

    async def _upsert_method_usage(self, entity_id: str, payload: Mapping[str, Any]) -> None:
        fields: dict[str, Any] = {
            MethodUsageFields.USER: [
                self._resolve_reference(EntityType.USER, payload.get("userId"))
            ],
            MethodUsageFields.METHOD: [str(payload.get("methodId"))],
            MethodUsageFields.USED_AT: payload.get("usedAt"),
        }
        schedule_id = self._resolve_reference(
            EntityType.PROGRAM_SCHEDULE, payload.get("programScheduleId")
        )
        if schedule_id:
            fields[MethodUsageFields.PROGRAM_SCHEDULE] = [schedule_id]
        else:
            program_id = self._resolve_reference(EntityType.PROGRAM, payload.get("programId"))
            if program_id:
                fields[MethodUsageFields.PROGRAM] = [program_id]
        if payload.get("remark"):
            fields[MethodUsageFields.REMARK] = str(payload["remark"])

        await self._create_or_update(EntityType.METHOD_USAGE, entity_id, fields)

    async def _upsert_habit_usage(self, entity_id: str, payload: Mapping[str, Any]) -> None:
        fields = {
            UsageFields.USER: [self._resolve_reference(EntityType.USER, payload.get("userId"))],
            UsageFields.METHOD: [str(payload.get("methodId"))],
            UsageFields.DATE: payload.get("date"),
        }
        await self._create_or_update(EntityType.HABIT_USAGE, entity_id, fields)

    async def _upsert_personal_goal_usage(
        self, entity_id: str, payload: Mapping[str, Any]
    ) -> None:
        fields = {
            UsageFields.USER: [self._resolve_reference(EntityType.USER, payload.get("userId"))],
            UsageFields.PERSONAL_GOAL: [
                self._resolve_reference(EntityType.PERSONAL_GOAL, payload.get("personalGoalId"))
            ],
            UsageFields.DATE: payload.get("date"),
        }
        await self._create_or_update(EntityType.PERSONAL_GOAL_USAGE, entity_id, fields)

    async def _upsert_overtuiging_usage(self, entity_id: str, payload: Mapping[str, Any]) -> None:
        fields: dict[str, Any] = {
            UsageFields.USER: [self._resolve_reference(EntityType.USER, payload.get("userId"))],
            UsageFields.OVERTUIGING: [str(payload.get("overtuigingId"))],
            UsageFields.DATE: payload.get("date"),
        }
        program_id = self._resolve_reference(EntityType.PROGRAM, payload.get("programId"))
        if program_id:
            fields[UsageFields.PROGRAM] = [program_id]
        await self._create_or_update(EntityType.OVERTUIGING_USAGE, entity_id, fields)

    async def _upsert_personal_goal(self, entity_id: str, payload: Mapping[str, Any]) -> None:
        # Partial updates: only fields present in the payload are written.
        fields: dict[str, Any] = {}
        if payload.get("userId"):
            fields[PersonalGoalFields.USER] = [
                self._resolve_reference(EntityType.USER, payload["userId"])
            ]
        if "name" in payload:
            fields[PersonalGoalFields.NAME] = str(payload["name"])
        if "status" in payload:
            fields[PersonalGoalFields.STATUS] = str(payload["status"])
        if "description" in payload:
            fields[PersonalGoalFields.DESCRIPTION] = str(payload["description"])
        if "scheduleDays" in payload:
            days = payload["scheduleDays"]
            fields[PersonalGoalFields.SCHEDULE_DAYS] = ", ".join(days) if days else ""

        await self._create_or_update(
            EntityType.PERSONAL_GOAL,
            entity_id,
            fields,
            create_defaults={
                PersonalGoalFields.NAME: "Persoonlijk doel",
                PersonalGoalFields.STATUS: "Actief",
            },
        )

    async def _upsert_persoonlijke_overtuiging(
        self, entity_id: str, payload: Mapping[str, Any]
    ) -> None:
        fields: dict[str, Any] = {}
        if payload.get("userId"):
            fields[PersoonlijkeOvertuigingFields.USER] = [
                self._resolve_reference(EntityType.USER, payload["userId"])
            ]
        if "name" in payload:
            fields[PersoonlijkeOvertuigingFields.NAME] = str(payload["name"])
        if "status" in payload:
            fields[PersoonlijkeOvertuigingFields.STATUS] = str(payload["status"])
        if "completedDate" in payload:
            fields[PersoonlijkeOvertuigingFields.COMPLETED_DATE] = payload["completedDate"] or None
        program_id = self._resolve_reference(EntityType.PROGRAM, payload.get("programId"))
        if program_id:
            fields[PersoonlijkeOvertuigingFields.PROGRAM] = [program_id]

        await self._create_or_update(
            EntityType.PERSOONLIJKE_OVERTUIGING,
            entity_id,
            fields,
            create_defaults={PersoonlijkeOvertuigingFields.STATUS: "Actief"},
        )

    async def _upsert_user(self, entity_id: str, payload: Mapping[str, Any]) -> None:
        """Write streak and reward fields onto an existing legacy user.

        Users are created on the legacy side only; a payload without any
        known field (e.g. the marker written by read-through repair) is a no-op.
        """
        fields = {
            legacy_name: payload[key]
            for key, legacy_name in USER_PAYLOAD_FIELDS.items()
            if key in payload
        }
        if not fields:
            return

        legacy_id = self._resolve_reference(EntityType.USER, payload.get("userId") or entity_id)
        if legacy_id is None:
            raise RetryableSyncError(f"User sync has no legacy id for {entity_id}")
        await self.store.update_record(LegacyTable.USERS, legacy_id, fields)

    # Deletes

    async def _delete(self, entity_type: str, entity_id: str) -> None:
        table = TABLE_BY_ENTITY.get(entity_type)
        if table is None or entity_type == EntityType.USER.value:
            raise UnsupportedEntityError(f"Unsupported delete for entity type: {entity_type}")

        legacy_id = self.id_map.find_legacy_id(entity_type, entity_id)
        if legacy_id is None:
            # Never reached the legacy store, nothing to remove.
            return
        await self.store.delete_record(table, legacy_id)
