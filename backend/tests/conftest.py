"""
Test configuration and shared fixtures for the scheduling test suite.

Uses a throwaway SQLite database file whose schema is built by running the
Alembic migrations once per session. Each test starts from empty tables.
"""

import os
import shutil
import tempfile
from datetime import time
from pathlib import Path
from typing import Generator

_TEST_DB_DIR = tempfile.mkdtemp(prefix="scheduling-tests-")
TEST_DATABASE_URL = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"

# Must be set before anything imports core.config
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["ENABLE_SCHEDULERS"] = "false"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy.orm import Session, sessionmaker

from core.database import Base, engine
from models import Patient, Therapist
from tests.utils import RecordingDispatcher, create_patient, create_rule_set, create_therapist

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


@pytest.fixture(scope="session")
def db_engine():
    """Engine bound to the test database (the application's own engine)."""
    yield engine
    engine.dispose()


@pytest.fixture(scope="session", autouse=True)
def setup_test_database(db_engine):
    """
    Build the schema with Alembic migrations (base -> head).

    This exercises the migration chain the same way a deployment does.
    """
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.upgrade(alembic_cfg, "head")

    yield

    Base.metadata.drop_all(bind=db_engine)
    db_engine.dispose()
    shutil.rmtree(_TEST_DB_DIR, ignore_errors=True)


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    """Session factory for code that opens its own sessions (sweeps, threads)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def clean_tables(db_engine):
    """Empty every table after each test."""
    yield
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Provide a database session for a test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def therapist(db_session) -> Therapist:
    """UTC therapist working Mondays 09:00-12:00."""
    therapist = create_therapist(db_session)
    create_rule_set(db_session, therapist, [(0, time(9, 0), time(12, 0))])
    return therapist


@pytest.fixture
def patient(db_session) -> Patient:
    return create_patient(db_session)
