"""Alembic environment for the relational store."""
from __future__ import annotations

from alembic import context
from sqlalchemy import engine_from_config, pool

import dualstore.models  # noqa: F401  registers every table on Base.metadata
from dualstore.core.settings import settings
from dualstore.db.session import Base

config = context.config

if not config.get_main_option("sqlalchemy.url"):
    if not settings.database_url_sync:
        raise RuntimeError("Set DATABASE_URL before running migrations")
    config.set_main_option("sqlalchemy.url", settings.database_url_sync)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
