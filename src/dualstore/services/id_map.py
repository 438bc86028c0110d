"""Bidirectional mapping between relational primary keys and legacy record ids.

Mappings are insert-or-update only. Identifiers, once assigned, are never
reclaimed, so there is no delete operation.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.models import LegacyIdMap


class IdMap:
    """ID map operations, usable standalone or inside a caller's transaction."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def upsert(
        self,
        entity_type: str,
        relational_id: str,
        legacy_id: str,
        session: Session | None = None,
    ) -> None:
        """Insert a mapping, or overwrite the legacy id and sync time if one exists."""
        now = utcnow()
        with self.database.scope(session) as db:
            stmt = upsert_insert(db, LegacyIdMap).values(
                entity_type=entity_type,
                relational_id=relational_id,
                legacy_id=legacy_id,
                last_synced_at=now,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[LegacyIdMap.entity_type, LegacyIdMap.relational_id],
                set_={
                    "legacy_id": stmt.excluded.legacy_id,
                    "last_synced_at": now,
                    "updated_at": now,
                },
            )
            db.execute(stmt)

    def find_legacy_id(
        self, entity_type: str, relational_id: str, session: Session | None = None
    ) -> str | None:
        with self.database.scope(session) as db:
            return db.scalars(
                select(LegacyIdMap.legacy_id)
                .where(
                    LegacyIdMap.entity_type == entity_type,
                    LegacyIdMap.relational_id == relational_id,
                )
                .limit(1)
            ).first()

    def find_relational_id(
        self, entity_type: str, legacy_id: str, session: Session | None = None
    ) -> str | None:
        with self.database.scope(session) as db:
            return db.scalars(
                select(LegacyIdMap.relational_id)
                .where(
                    LegacyIdMap.entity_type == entity_type,
                    LegacyIdMap.legacy_id == legacy_id,
                )
                .order_by(LegacyIdMap.id)
                .limit(1)
            ).first()
