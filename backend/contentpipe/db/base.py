"""
Declarative base and shared columns for the pipeline's tables.

Key Concepts:
--------------
1. metadata: constraint naming convention so Alembic autogenerate
   produces stable names (pk_content_sources, fk_content_chunks_...)
2. Base: DeclarativeBase every model inherits from
3. BaseModel: abstract base adding id / created_at / updated_at
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ================================
# Naming Convention for Constraints
# ================================
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)


def utcnow() -> datetime:
    """Timezone-aware current time; every timestamp is stored in UTC."""
    return datetime.now(timezone.utc)


# ================================
# Base DeclarativeBase Class
# ================================
class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    metadata = metadata

    __tablename__: str


# ================================
# Common Table Attributes Mixin
# ================================
class CommonTableAttributes:
    """
    Mixin adding a surrogate key and audit timestamps.

    - id: auto-incrementing integer primary key
    - created_at: set once on insert
    - updated_at: refreshed on every ORM update; the search index uses it
      to notice that a source changed
    """

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing primary key"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated (UTC)"
    )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id})"

    def dict(self) -> dict[str, Any]:
        """Column name to value mapping, handy in logs and tests."""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }


# ================================
# Convenient Base Model
# ================================
class BaseModel(Base, CommonTableAttributes):
    """Abstract base for application models (Base + common columns)."""

    __abstract__ = True


# ================================
# String Length Constraints
# ================================
String255 = String(255)
String500 = String(500)
String1000 = String(1000)
