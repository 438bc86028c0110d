"""Database engine, pooling and transaction scope.

The relational store is an explicitly constructed resource: the process's
composition root builds one ``Database`` and hands it to every component
that needs it, so tests can substitute an in-memory engine.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from dualstore.core.settings import Settings
from dualstore.errors import (
    ConfigurationError,
    StoreConnectionTimeoutError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import dualstore.models  # noqa: E402,F401


class Database:
    """Owns one bounded connection pool and hands out transactional sessions."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, config: Settings) -> Database:
        """Build a pooled engine, failing fast when no connection string is set."""
        if not config.database_configured:
            raise ConfigurationError(
                "DATABASE_URL environment variable is required for relational store operations"
            )

        connect_args: dict[str, Any] = {}
        if config.ssl_mode:
            connect_args["sslmode"] = config.ssl_mode

        engine = create_engine(
            config.database_url,
            pool_size=config.pool_size,
            max_overflow=config.pool_max_overflow,
            pool_timeout=config.pool_timeout_seconds,
            pool_recycle=config.pool_recycle_seconds,
            pool_pre_ping=True,
            echo=config.sql_debug,
            connect_args=connect_args,
        )
        return cls(engine)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session inside BEGIN/COMMIT, rolling back on any failure.

        The connection returns to the pool on every exit path. A pool that
        stays exhausted past its timeout surfaces as
        ``StoreConnectionTimeoutError``.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except sa_exc.TimeoutError as exc:
            session.rollback()
            raise StoreConnectionTimeoutError(
                "Timed out waiting for a relational store connection"
            ) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def scope(self, session: Session | None = None) -> Iterator[Session]:
        """Join the caller's open transaction, or run in a new one."""
        if session is not None:
            yield session
            return
        with self.transaction() as scoped:
            yield scoped

    def ping(self, attempts: int = 3, backoff_seconds: float = 0.5) -> None:
        """Run ``SELECT 1``, retrying transient connection failures."""
        last_error: Exception | None = None
        for attempt in range(1, max(1, attempts) + 1):
            try:
                with self.engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                return
            except sa_exc.TimeoutError as exc:
                raise StoreConnectionTimeoutError(
                    "Timed out waiting for a relational store connection"
                ) from exc
            except (sa_exc.OperationalError, sa_exc.InterfaceError) as exc:
                last_error = exc
                logger.warning("Relational store ping failed (attempt %d): %s", attempt, exc)
                if attempt < attempts:
                    time.sleep(backoff_seconds * attempt)
        raise StoreUnavailableError(f"Relational store unreachable: {last_error}") from last_error

    def create_tables(self) -> None:
        """Create all database tables."""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables."""
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def upsert_insert(session: Session, model: Any) -> Any:
    """Return a dialect-specific INSERT supporting ``ON CONFLICT`` clauses."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise ConfigurationError(f"Unsupported relational dialect: {dialect}")
