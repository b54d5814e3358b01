"""SQLAlchemy declarative base and shared mixins.

Tables use server-assigned integer ids. TimestampMixin adds `created_at`
and `updated_at`; append-only tables only take `created_at` via CreatedAtMixin.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    pass


class CreatedAtMixin:
    """Mixin adding a serial id and created_at.

    Uses server-side defaults so timestamps are set by PostgreSQL.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class TimestampMixin(CreatedAtMixin):
    """CreatedAtMixin plus an updated_at column bumped on every UPDATE.

    Server-generated values are fetched back with RETURNING (eager_defaults)
    so they can be read after a flush without a lazy load.
    """

    __mapper_args__ = {"eager_defaults": True}

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
