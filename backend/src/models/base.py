"""
Database base models and utilities.

This module provides the base SQLAlchemy model class and the column type
used for every stored instant.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import TIMESTAMP
from sqlalchemy.types import TypeDecorator

# Re-export Base from core.database so models have a single import point
from core.database import Base  # type: ignore[reportUnusedImport]


class UTCDateTime(TypeDecorator[datetime]):
    """
    Timestamp column that only accepts aware datetimes and returns aware UTC.

    PostgreSQL stores ``timestamptz`` natively; SQLite has no timezone
    support, so values are written as naive UTC and re-tagged on the way out.
    """

    impl = TIMESTAMP(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes are not allowed; pass a timezone-aware value")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


__all__ = ["Base", "UTCDateTime"]
