"""
Base ORM Model and Column Types.

============================================================
PURPOSE
============================================================
Provides the declarative base and the UTC datetime column type
used by all coordination tables.

============================================================
COMPONENTS
============================================================
- UtcDateTime: timezone-aware datetime stored and read as UTC
- Base: SQLAlchemy declarative base for all models

============================================================
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class UtcDateTime(TypeDecorator):
    """
    Datetime column that always round-trips as aware UTC.

    Lease expiry and presence freshness are compared inside SQL, so
    every value bound to a statement is converted to UTC first.
    Backends that drop the offset (SQLite) return naive values,
    which are read back as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    Every `Mapped[datetime]` column is a UtcDateTime.
    """

    type_annotation_map = {
        datetime: UtcDateTime(),
    }
