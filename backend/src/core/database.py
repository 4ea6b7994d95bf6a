# pyright: reportMissingTypeStubs=false
"""
Database configuration and session management.

This module sets up SQLAlchemy database connection, session management,
and provides dependency injection for database sessions in FastAPI routes.
"""

import logging
from typing import Any, Dict, Generator

from fastapi import HTTPException
from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from core.config import (
    DATABASE_URL,
    DB_LOCK_TIMEOUT_MS,
    DB_POOL_TIMEOUT_SECONDS,
    DB_STATEMENT_TIMEOUT_MS,
)
from core.constants import DB_POOL_RECYCLE_SECONDS

logger = logging.getLogger(__name__)


def build_engine_options(database_url: str) -> Dict[str, Any]:
    """
    Build engine keyword arguments for the given backend.

    Every store access is bounded: PostgreSQL sessions get lock and statement
    timeouts, SQLite connections get a busy timeout.
    """
    options: Dict[str, Any] = {
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": DB_POOL_RECYCLE_SECONDS,
        "echo": False,
        "future": True,
    }
    if database_url.startswith("sqlite"):
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": DB_LOCK_TIMEOUT_MS / 1000,
        }
    else:
        options["pool_timeout"] = DB_POOL_TIMEOUT_SECONDS
        options["connect_args"] = {
            "options": (
                f"-c lock_timeout={DB_LOCK_TIMEOUT_MS} "
                f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"
            )
        }
    return options


engine = create_engine(DATABASE_URL, **build_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Don't expire objects after commit
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


@event.listens_for(Base, "before_insert", propagate=True)  # type: ignore
def receive_before_insert(mapper, connection, target):  # type: ignore
    """Set created_at and updated_at on insert (UTC)."""
    # Import here to avoid circular import
    from utils.datetime_utils import utc_now
    now = utc_now()
    for column_name in ("created_at", "updated_at"):
        if column_name in mapper.columns and getattr(target, column_name, None) is None:  # type: ignore
            setattr(target, column_name, now)


@event.listens_for(Base, "before_update", propagate=True)  # type: ignore
def receive_before_update(mapper, connection, target):  # type: ignore
    """Set updated_at on update (UTC)."""
    from utils.datetime_utils import utc_now
    if "updated_at" in mapper.columns:  # type: ignore
        setattr(target, "updated_at", utc_now())


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency to provide database sessions.

    Yields a database session that is automatically closed after the request.
    Handles cleanup even if an exception occurs during request processing.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        logger.exception(f"Database error: {e}")
        db.rollback()
        raise
    except HTTPException:
        # Don't log HTTPExceptions as errors - they're expected business logic
        db.rollback()
        raise
    except Exception:
        # Domain errors are mapped to responses by the app's exception handlers
        db.rollback()
        raise
    finally:
        db.close()
