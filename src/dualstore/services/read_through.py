"""Read-through repair for users.

Relational reads come first. On a miss, and only while the fallback flag is
on, the user is fetched from the legacy store, materialized through the
normal repository upsert (ID map included) and returned in relational shape.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from dualstore.core.backend_mode import BackendModeSelector
from dualstore.db.ids import is_legacy_record_id
from dualstore.models import UserStatus
from dualstore.repositories.user_repo import (
    LegacyUserProfile,
    UserRecord,
    UserRepository,
)
from dualstore.services.legacy import LegacyRecord, LegacyStore, LegacyTable, field_equals_formula
from dualstore.services.legacy_writers import UserFields
from dualstore.services.outbox import EntityType, EventType, OutboxEvent

logger = logging.getLogger(__name__)

READTHROUGH_FLAG = "USER_READTHROUGH_FALLBACK_ENABLED"

LEGACY_STATUS_DISABLED = "Geen toegang"


def _text(fields: Mapping[str, Any], name: str) -> str | None:
    value = fields.get(name)
    return str(value) if value else None


def profile_from_record(record: LegacyRecord) -> LegacyUserProfile | None:
    """Map a legacy user row; rows without an email cannot be materialized."""
    fields = record.fields
    email = _text(fields, UserFields.EMAIL)
    if not email:
        return None
    status = (
        UserStatus.DISABLED
        if _text(fields, UserFields.STATUS) == LEGACY_STATUS_DISABLED
        else UserStatus.ACTIVE
    )
    return LegacyUserProfile(
        legacy_id=record.id,
        email=email,
        name=_text(fields, UserFields.NAME),
        role=_text(fields, UserFields.ROLE),
        language_code=_text(fields, UserFields.LANGUAGE_CODE),
        password_hash=_text(fields, UserFields.PASSWORD_HASH),
        status=status,
    )


class UserReadThrough:
    def __init__(
        self,
        users: UserRepository | None,
        legacy: LegacyStore,
        selector: BackendModeSelector,
    ) -> None:
        self.users = users
        self.legacy = legacy
        self.selector = selector

    @property
    def fallback_enabled(self) -> bool:
        return self.selector.flag(READTHROUGH_FLAG, default=True)

    async def get_by_email(self, email: str) -> UserRecord | None:
        users = self.users
        if users is None:
            return None

        existing = users.find_by_email(email)
        if existing is not None:
            return existing
        if not self.fallback_enabled:
            return None

        records = await self.legacy.list_records(
            LegacyTable.USERS,
            filter_formula=field_equals_formula(
                UserFields.EMAIL, email.strip(), ignore_case=True
            ),
            max_records=1,
        )
        if not records:
            return None
        return self._materialize(users, records[0])

    async def get_by_id(self, user_id: str) -> UserRecord | None:
        """Accepts a relational UUID or a legacy record id."""
        users = self.users
        if users is None:
            return None

        existing = users.find_by_id(user_id)
        if existing is not None:
            return existing
        if not self.fallback_enabled or not is_legacy_record_id(user_id):
            return None

        record = await self.legacy.get_record(LegacyTable.USERS, user_id)
        if record is None:
            return None
        return self._materialize(users, record)

    @staticmethod
    def _materialize(users: UserRepository, record: LegacyRecord) -> UserRecord | None:
        profile = profile_from_record(record)
        if profile is None:
            logger.warning("Legacy user %s has no email, skipping read-through", record.id)
            return None

        with users.database.transaction() as db:
            user = users.upsert_from_legacy(profile, session=db)
            users.outbox.enqueue(
                OutboxEvent(
                    event_type=EventType.UPSERT,
                    entity_type=EntityType.USER,
                    entity_id=user.id,
                    payload={"userId": user.id, "legacyId": profile.legacy_id},
                ),
                session=db,
            )
        logger.info("Materialized legacy user %s as %s", profile.legacy_id, user.id)
        return user
