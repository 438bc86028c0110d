# src/dualstore/models/inbox.py
"""Models supporting inbound webhook deduplication."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from dualstore.db.session import Base
from dualstore.db.time import utcnow


class SyncInboxEvent(Base):
    """Record indicating that an inbound event id has already been applied."""

    __tablename__ = "sync_inbox_events"

    event_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
