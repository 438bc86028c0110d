"""Apply verified legacy user changes (webhooks and batches) to the relational store."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.orm import Session

from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.models import SyncInboxEvent
from dualstore.repositories.user_repo import LegacyUserProfile, UserRepository
from dualstore.schemas.sync import InboundUserRecord, UserWebhookPayload
from dualstore.services.legacy import LegacyStore, LegacyTable
from dualstore.services.read_through import profile_from_record

logger = logging.getLogger(__name__)

USER_WEBHOOK_SOURCE = "user_webhook"
BATCH_SOURCE = "legacy_batch"


@dataclass(frozen=True)
class InboundResult:
    event_id: str
    deduplicated: bool
    synced: int = 0


def profile_from_batch_record(record: InboundUserRecord) -> LegacyUserProfile | None:
    """Records without an id or an email are skipped."""
    values = record.resolved()
    if not record.id or not values.email:
        return None
    return LegacyUserProfile(
        legacy_id=record.id,
        email=values.email,
        name=values.name,
        role=values.role,
        language_code=values.language_code,
        password_hash=values.password_hash,
    )


class InboundUserSync:
    """Inbox-deduplicated application of user change events.

    The inbox marker and the user write share one transaction, so an event
    that fails midway is not remembered as applied.
    """

    def __init__(self, database: Database, users: UserRepository, legacy: LegacyStore) -> None:
        self.database = database
        self.users = users
        self.legacy = legacy

    @staticmethod
    def _claim_event(db: Session, event_id: str, event_type: str, source: str) -> bool:
        stmt = (
            upsert_insert(db, SyncInboxEvent)
            .values(event_id=event_id, source=source, event_type=event_type, received_at=utcnow())
            .on_conflict_do_nothing(index_elements=[SyncInboxEvent.event_id])
        )
        return db.execute(stmt).rowcount == 1

    def apply(self, payload: UserWebhookPayload) -> InboundResult:
        with self.database.transaction() as db:
            if not self._claim_event(db, payload.event_id, payload.event_type, USER_WEBHOOK_SOURCE):
                logger.info("Deduplicated inbound event %s", payload.event_id)
                return InboundResult(payload.event_id, deduplicated=True)

            user = payload.user
            if payload.event_type == "user.deleted":
                changed = self.users.mark_deleted(user.id, session=db)
                logger.info("Marked user %s as deleted (changed=%s)", user.id, changed)
            else:
                record = self.users.upsert_from_legacy(
                    LegacyUserProfile(
                        legacy_id=user.id,
                        email=user.email,
                        name=user.name,
                        role=user.role,
                        language_code=user.language_code,
                        password_hash=user.password_hash,
                    ),
                    session=db,
                )
                logger.info("Synced user %s as %s via %s", user.id, record.id, payload.event_type)

        return InboundResult(payload.event_id, deduplicated=False)

    async def fetch_profile(self, record_id: str) -> LegacyUserProfile | None:
        """Load one user from the legacy store for a batch that only names its record id."""
        record = await self.legacy.get_record(LegacyTable.USERS, record_id)
        return profile_from_record(record) if record is not None else None

    def apply_batch(self, event_id: str, profiles: Sequence[LegacyUserProfile]) -> InboundResult:
        """Upsert a batch of legacy users under one inbox event id."""
        with self.database.transaction() as db:
            if not self._claim_event(db, event_id, "users.batch", BATCH_SOURCE):
                logger.info("Deduplicated inbound batch %s", event_id)
                return InboundResult(event_id, deduplicated=True)

            for profile in profiles:
                self.users.upsert_from_legacy(profile, session=db)

        logger.info("Synced %d user(s) from inbound batch %s", len(profiles), event_id)
        return InboundResult(event_id, deduplicated=False, synced=len(profiles))
