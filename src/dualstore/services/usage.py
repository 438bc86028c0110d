"""Usage writes routed by backend mode.

``primary`` writes go to the relational repositories, which enqueue the
legacy propagation in the same transaction. ``legacy_only`` and
``shadow_read`` write the legacy store directly; ``shadow_read`` additionally
compares reads against the relational store and logs any divergence.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, TypeVar, assert_never

from dualstore.core.backend_mode import BackendMode, BackendModeSelector
from dualstore.errors import ConfigurationError, DuplicateCompletionError
from dualstore.repositories.habit_usage_repo import HabitUsageRepository
from dualstore.repositories.overtuiging_usage_repo import OvertuigingUsageRepository
from dualstore.repositories.personal_goal_usage_repo import PersonalGoalUsageRepository
from dualstore.services.legacy import LegacyRecord, LegacyStore, LegacyTable, escape_formula_value
from dualstore.services.legacy_writers import UsageFields

logger = logging.getLogger(__name__)

HABIT_USAGE_BACKEND = "DATA_BACKEND_HABIT_USAGE"
PERSONAL_GOAL_USAGE_BACKEND = "DATA_BACKEND_PERSONAL_GOAL_USAGE"
OVERTUIGING_USAGE_BACKEND = "DATA_BACKEND_OVERTUIGING_USAGE"

R = TypeVar("R")


@dataclass(frozen=True)
class UsageResult:
    id: str
    created: bool


def same_day_formula(field_name: str, day: date) -> str:
    return f"IS_SAME({{{field_name}}}, \"{escape_formula_value(day.isoformat())}\", 'day')"


def _links(fields: Mapping[str, Any], name: str) -> list[str]:
    value = fields.get(name)
    if isinstance(value, list):
        return [str(item) for item in value]
    return [str(value)] if value else []


def _relational(repository: R | None) -> R:
    if repository is None:
        raise ConfigurationError("Relational store is not configured")
    return repository


class UsageService:
    def __init__(
        self,
        selector: BackendModeSelector,
        legacy: LegacyStore,
        habits: HabitUsageRepository | None = None,
        personal_goals: PersonalGoalUsageRepository | None = None,
        beliefs: OvertuigingUsageRepository | None = None,
    ) -> None:
        self.selector = selector
        self.legacy = legacy
        self.habits = habits
        self.personal_goals = personal_goals
        self.beliefs = beliefs

    def _mode(self, flag_name: str, repository: object | None) -> BackendMode:
        mode = self.selector.mode(flag_name)
        if mode is not BackendMode.LEGACY_ONLY and repository is None:
            logger.warning("%s=%s but the relational store is not configured", flag_name, mode.value)
            return BackendMode.LEGACY_ONLY
        return mode

    async def _legacy_usages_for_day(self, table: str, day: date) -> list[LegacyRecord]:
        return await self.legacy.list_records(
            table, filter_formula=same_day_formula(UsageFields.DATE, day)
        )

    # Habit usage

    async def list_habit_method_ids(self, user_id: str, day: date) -> list[str]:
        mode = self._mode(HABIT_USAGE_BACKEND, self.habits)
        if mode is BackendMode.PRIMARY:
            return _relational(self.habits).list_method_ids_for_date(user_id, day)

        legacy_ids = sorted(await self._legacy_habit_method_ids(user_id, day))
        if mode is BackendMode.SHADOW_READ:
            relational_ids = _relational(self.habits).list_method_ids_for_date(user_id, day)
            if relational_ids != legacy_ids:
                logger.warning(
                    "Habit usage shadow read mismatch for %s on %s: legacy=%s relational=%s",
                    user_id,
                    day.isoformat(),
                    legacy_ids,
                    relational_ids,
                )
        elif mode is not BackendMode.LEGACY_ONLY:
            assert_never(mode)
        return legacy_ids

    async def _legacy_habit_method_ids(self, user_id: str, day: date) -> list[str]:
        method_ids = []
        for record in await self._legacy_usages_for_day(LegacyTable.HABIT_USAGE, day):
            if user_id in _links(record.fields, UsageFields.USER):
                method_ids.extend(_links(record.fields, UsageFields.METHOD)[:1])
        return method_ids

    async def _find_or_create_legacy_usage(
        self, table: str, day: date, user_id: str, subject_field: str, subject_id: str
    ) -> UsageResult:
        for record in await self._legacy_usages_for_day(table, day):
            if user_id in _links(record.fields, UsageFields.USER) and subject_id in _links(
                record.fields, subject_field
            ):
                return UsageResult(record.id, created=False)
        created = await self.legacy.create_record(
            table,
            {
                UsageFields.USER: [user_id],
                subject_field: [subject_id],
                UsageFields.DATE: day.isoformat(),
            },
        )
        return UsageResult(created.id, created=True)

    async def record_habit_usage(self, user_id: str, method_id: str, day: date) -> UsageResult:
        mode = self._mode(HABIT_USAGE_BACKEND, self.habits)
        if mode is BackendMode.PRIMARY:
            habits = _relational(self.habits)
            existing = habits.find(user_id, method_id, day)
            if existing is not None:
                return UsageResult(existing.id, created=False)
            return UsageResult(habits.record(user_id, method_id, day).id, created=True)
        if mode is BackendMode.SHADOW_READ or mode is BackendMode.LEGACY_ONLY:
            return await self._find_or_create_legacy_usage(
                LegacyTable.HABIT_USAGE, day, user_id, UsageFields.METHOD, method_id
            )
        assert_never(mode)

    # Personal-goal usage

    async def record_personal_goal_usage(
        self, user_id: str, personal_goal_id: str, day: date
    ) -> UsageResult:
        mode = self._mode(PERSONAL_GOAL_USAGE_BACKEND, self.personal_goals)
        if mode is BackendMode.PRIMARY:
            goals = _relational(self.personal_goals)
            existing = goals.find(user_id, personal_goal_id, day)
            if existing is not None:
                return UsageResult(existing.id, created=False)
            return UsageResult(goals.record(user_id, personal_goal_id, day).id, created=True)
        if mode is BackendMode.SHADOW_READ or mode is BackendMode.LEGACY_ONLY:
            return await self._find_or_create_legacy_usage(
                LegacyTable.PERSONAL_GOAL_USAGE,
                day,
                user_id,
                UsageFields.PERSONAL_GOAL,
                personal_goal_id,
            )
        assert_never(mode)

    # Belief usage

    async def complete_overtuiging(
        self,
        user_id: str,
        overtuiging_id: str,
        day: date,
        program_id: str | None = None,
    ) -> UsageResult:
        """Record a once-only belief completion.

        Raises:
            DuplicateCompletionError: the user already completed this belief.
        """
        mode = self._mode(OVERTUIGING_USAGE_BACKEND, self.beliefs)
        if mode is BackendMode.PRIMARY:
            record = _relational(self.beliefs).create(
                user_id, overtuiging_id, day, program_id=program_id
            )
            return UsageResult(record.id, created=True)
        if mode is BackendMode.SHADOW_READ or mode is BackendMode.LEGACY_ONLY:
            for record in await self.legacy.list_records(LegacyTable.OVERTUIGING_USAGE):
                if user_id in _links(record.fields, UsageFields.USER) and overtuiging_id in _links(
                    record.fields, UsageFields.OVERTUIGING
                ):
                    raise DuplicateCompletionError(user_id, overtuiging_id)
            fields: dict[str, Any] = {
                UsageFields.USER: [user_id],
                UsageFields.OVERTUIGING: [overtuiging_id],
                UsageFields.DATE: day.isoformat(),
            }
            if program_id:
                fields[UsageFields.PROGRAM] = [program_id]
            created = await self.legacy.create_record(LegacyTable.OVERTUIGING_USAGE, fields)
            return UsageResult(created.id, created=True)
        assert_never(mode)
