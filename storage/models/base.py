"""
Base ORM Model and Mixins.

============================================================
PURPOSE
============================================================
Provides the declarative base and common column types used
by all ORM models of the risk core.

============================================================
COMPONENTS
============================================================
- UTCDateTime: timezone-aware datetime on every backend
- Base: SQLAlchemy declarative base for all models
- TimestampMixin: Common timestamp columns

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, Numeric, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    PostgreSQL keeps the offset natively. SQLite stores naive text,
    so values are normalised to UTC on write and tagged UTC on read.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
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


# Prices and balances are floats in the risk formulas
Money = Numeric(24, 10, asdecimal=False)


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    All models of the risk core inherit from this base.
    """

    type_annotation_map = {
        datetime: UTCDateTime(),
        float: Money,
    }


class TimestampMixin:
    """
    Mixin providing standard timestamp columns.

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            ...
    """

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        comment="Record creation timestamp (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        comment="Last update timestamp (UTC)"
    )
