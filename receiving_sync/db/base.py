"""SQLAlchemy declarative base and common utilities."""

from sqlalchemy import BigInteger
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from receiving_sync.core.clock import now_ms


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TimestampMixin:
    """Mixin for created_at and last_updated timestamps in epoch milliseconds.

    Values come from the application server clock rather than the database
    server so that SQLite and PostgreSQL report identical units.
    """

    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms, nullable=False)
    last_updated: Mapped[int] = mapped_column(
        BigInteger, default=now_ms, onupdate=now_ms, nullable=False, index=True,
    )
