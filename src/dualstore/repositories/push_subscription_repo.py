"""Data access helpers for push subscriptions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dualstore.db.session import Database, upsert_insert
from dualstore.db.time import utcnow
from dualstore.models import PushSubscription, SubscriptionStatus

__all__ = ["PushSubscriptionRecord", "PushSubscriptionRepository"]


@dataclass(frozen=True)
class PushSubscriptionRecord:
    id: int
    user_id: str
    endpoint: str
    p256dh: str
    auth: str
    status: str
    user_agent: str | None
    last_error: str | None
    last_success_at: datetime | None

    @classmethod
    def from_row(cls, row: PushSubscription) -> PushSubscriptionRecord:
        return cls(
            id=row.id,
            user_id=row.user_id,
            endpoint=row.endpoint,
            p256dh=row.p256dh,
            auth=row.auth,
            status=row.status,
            user_agent=row.user_agent,
            last_error=row.last_error,
            last_success_at=row.last_success_at,
        )


class PushSubscriptionRepository:
    """Subscription lifecycle: active -> revoked | expired, refreshed by re-subscribing."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def upsert(
        self,
        user_id: str,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: str | None = None,
        session: Session | None = None,
    ) -> PushSubscriptionRecord:
        """Create or refresh a subscription, always reactivating it."""
        now = utcnow()
        refreshed = {
            "user_id": user_id,
            "p256dh": p256dh,
            "auth": auth,
            "status": SubscriptionStatus.ACTIVE,
            "user_agent": user_agent,
            "last_error": None,
            "updated_at": now,
        }
        with self.database.scope(session) as db:
            stmt = upsert_insert(db, PushSubscription).values(
                endpoint=endpoint, created_at=now, **refreshed
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[PushSubscription.endpoint], set_=refreshed
            )
            db.execute(stmt)
            row = db.scalars(
                select(PushSubscription)
                .where(PushSubscription.endpoint == endpoint)
                .execution_options(populate_existing=True)
            ).one()
            return PushSubscriptionRecord.from_row(row)

    def revoke(self, user_id: str, endpoint: str, session: Session | None = None) -> bool:
        """Revoke on explicit unsubscribe. Returns False if nothing changed."""
        with self.database.scope(session) as db:
            result = db.execute(
                update(PushSubscription)
                .where(
                    PushSubscription.user_id == user_id,
                    PushSubscription.endpoint == endpoint,
                    PushSubscription.status != SubscriptionStatus.REVOKED,
                )
                .values(status=SubscriptionStatus.REVOKED, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return (result.rowcount or 0) > 0

    def list_active(self, user_id: str, session: Session | None = None) -> list[PushSubscriptionRecord]:
        with self.database.scope(session) as db:
            rows = db.scalars(
                select(PushSubscription)
                .where(
                    PushSubscription.user_id == user_id,
                    PushSubscription.status == SubscriptionStatus.ACTIVE,
                )
                .order_by(PushSubscription.id)
                .execution_options(populate_existing=True)
            ).all()
            return [PushSubscriptionRecord.from_row(row) for row in rows]

    def find_by_endpoint(
        self, endpoint: str, session: Session | None = None
    ) -> PushSubscriptionRecord | None:
        with self.database.scope(session) as db:
            row = db.scalars(
                select(PushSubscription)
                .where(PushSubscription.endpoint == endpoint)
                .execution_options(populate_existing=True)
            ).first()
            return PushSubscriptionRecord.from_row(row) if row else None

    def mark_expired(
        self, subscription_id: int, error_message: str | None = None, session: Session | None = None
    ) -> None:
        """Permanent delivery failure; the subscription is never used again."""
        self._set(
            subscription_id,
            {"status": SubscriptionStatus.EXPIRED, "last_error": error_message},
            session,
        )

    def mark_success(self, subscription_id: int, session: Session | None = None) -> None:
        self._set(subscription_id, {"last_success_at": utcnow(), "last_error": None}, session)

    def mark_error(
        self, subscription_id: int, error_message: str, session: Session | None = None
    ) -> None:
        self._set(subscription_id, {"last_error": error_message}, session)

    def _set(self, subscription_id: int, values: dict, session: Session | None) -> None:
        with self.database.scope(session) as db:
            db.execute(
                update(PushSubscription)
                .where(PushSubscription.id == subscription_id)
                .values(updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
