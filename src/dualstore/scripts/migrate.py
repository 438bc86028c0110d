"""Upgrade the configured relational store to the latest schema revision."""
from __future__ import annotations

import os

from alembic import command
from alembic.config import Config

from dualstore.core.settings import settings

MIGRATIONS_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "..", "..", "migrations")
)


def build_alembic_config(url: str | None = None) -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", MIGRATIONS_DIR)
    database_url = url or settings.database_url_sync
    if database_url:
        cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def run_upgrade_head() -> None:
    command.upgrade(build_alembic_config(), "head")


if __name__ == "__main__":
    run_upgrade_head()
