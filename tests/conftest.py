# tests/conftest.py
from __future__ import annotations

import os
import uuid
from collections.abc import Iterator
from datetime import date

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")

from dualstore.core.backend_mode import BackendModeSelector
from dualstore.core.container import Container, RelationalComponents, build_container
from dualstore.core.settings import Settings
from dualstore.db.session import Database
from dualstore.main import create_app
from dualstore.models import PersonalGoal, Program, ProgramSchedule, User

from tests.fakes import FakeLegacyStore, FakePushTransport

TEST_DB_URL = "sqlite://"
WEBHOOK_SECRET = "test-webhook-secret"
ADMIN_SECRET = "test-admin-secret"
INBOUND_SECRET = "test-inbound-secret"


@pytest.fixture()
def database() -> Iterator[Database]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db = Database(engine)
    db.create_tables()
    try:
        yield db
    finally:
        db.drop_tables()
        db.dispose()


@pytest.fixture()
def test_settings() -> Settings:
    """Settings pinned for tests; nothing is read from the environment."""
    return Settings(
        DATABASE_URL=None,
        LEGACY_WEBHOOK_SECRET=WEBHOOK_SECRET,
        SYNC_ADMIN_SECRET=ADMIN_SECRET,
        LEGACY_INBOUND_SYNC_SECRET=INBOUND_SECRET,
        NOTIFICATION_DEFAULT_TIMEZONE="Europe/Brussels",
        SYNC_MAX_RETRIES=3,
        SYNC_RETRY_BASE_SECONDS=5,
    )


@pytest.fixture()
def flags() -> dict[str, str]:
    """Mutable backing store for backend modes and feature flags."""
    return {}


@pytest.fixture()
def selector(flags: dict[str, str]) -> BackendModeSelector:
    return BackendModeSelector(flags)


@pytest.fixture()
def legacy() -> FakeLegacyStore:
    return FakeLegacyStore()


@pytest.fixture()
def push_transport() -> FakePushTransport:
    return FakePushTransport()


@pytest.fixture()
def container(
    test_settings: Settings,
    database: Database,
    legacy: FakeLegacyStore,
    selector: BackendModeSelector,
    push_transport: FakePushTransport,
) -> Container:
    return build_container(
        test_settings,
        database=database,
        legacy=legacy,
        selector=selector,
        push_transport=push_transport,
    )


@pytest.fixture()
def relational(container: Container) -> RelationalComponents:
    assert container.relational is not None
    return container.relational


@pytest.fixture()
def app(container: Container) -> FastAPI:
    return create_app(container, run_worker=False)


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    # No context manager: the shutdown hook would dispose the shared in-memory engine.
    return TestClient(app, base_url="http://test")


def make_user(
    database: Database,
    email: str = "ann@example.com",
    *,
    language_code: str | None = "nl",
) -> str:
    """Insert a relational user row and return its id."""
    user_id = str(uuid.uuid4())
    with database.transaction() as db:
        db.add(User(id=user_id, email=email, language_code=language_code))
    return user_id


def make_program(
    database: Database,
    user_id: str,
    sessions: list[tuple[date, list[str]]],
    *,
    status: str = "Actief",
) -> tuple[str, list[str]]:
    """Insert a program with dated sessions; returns the program and schedule ids."""
    program_id = str(uuid.uuid4())
    schedule_ids = [str(uuid.uuid4()) for _ in sessions]
    with database.transaction() as db:
        db.add(Program(id=program_id, user_id=user_id, status=status))
        db.flush()
        for schedule_id, (session_date, methods) in zip(schedule_ids, sessions, strict=True):
            db.add(
                ProgramSchedule(
                    id=schedule_id,
                    program_id=program_id,
                    session_date=session_date,
                    method_ids=methods,
                )
            )
    return program_id, schedule_ids


def make_personal_goal(
    database: Database, user_id: str, name: str, schedule_days: list[str]
) -> str:
    goal_id = str(uuid.uuid4())
    with database.transaction() as db:
        db.add(PersonalGoal(id=goal_id, user_id=user_id, name=name, schedule_days=schedule_days))
    return goal_id
