"""SQLAlchemy declarative base shared by all models."""
from datetime import UTC, datetime

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def utcnow() -> datetime:
    """
    Current UTC time without tzinfo, truncated to whole seconds.

    Timestamps are stored naive-UTC so the same value round-trips through
    SQLite, MySQL and PostgreSQL.
    """
    return datetime.now(UTC).replace(tzinfo=None, microsecond=0)
