# src/dualstore/models/id_map.py
"""Cross-store identifier mapping."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dualstore.db.session import Base
from dualstore.db.time import utcnow
from dualstore.db.types import BigIntPK


class LegacyIdMap(Base):
    """Links a relational primary key to the legacy record id of the same entity."""

    __tablename__ = "legacy_id_map"
    __table_args__ = (
        UniqueConstraint("entity_type", "relational_id", name="uq_legacy_id_map_relational"),
        Index("ix_legacy_id_map_legacy", "entity_type", "legacy_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    relational_id: Mapped[str] = mapped_column(String(64), nullable=False)
    legacy_id: Mapped[str] = mapped_column(String(32), nullable=False)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
