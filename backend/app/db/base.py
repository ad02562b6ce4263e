"""
Database Base Classes and Common Column Types

Every ORM model inherits from BaseModel, which provides:
- id: auto-incrementing integer primary key
- created_at / updated_at: timezone-aware UTC timestamps

Column types that differ per dialect are declared here once:
- JSONType: JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
- vector_type(dim): pgvector VECTOR(dim) on PostgreSQL, JSON list on SQLite
"""

from datetime import datetime, timezone
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, DateTime, MetaData, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, registry
from sqlalchemy.types import TypeEngine


# ================================
# Naming Convention for Constraints
# ================================
# Deterministic constraint names keep Alembic diffs stable:
# - ix_embeddings_content_type
# - uq_conversation_sessions_session_key
# - fk_chat_messages_session_id_conversation_sessions
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

orm_registry = registry(metadata=metadata)


def utc_now() -> datetime:
    """Current time in UTC (timezone-aware)."""
    return datetime.now(timezone.utc)


# ================================
# Base DeclarativeBase Class
# ================================
class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    registry = orm_registry
    metadata = metadata

    __tablename__: str


# ================================
# Common Table Attributes Mixin
# ================================
class CommonTableAttributes:
    """
    Mixin adding id, created_at and updated_at to a model.

    updated_at is refreshed on every ORM update, which the search engine
    uses as the recency tie-breaker for equally scored results.
    """

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing primary key"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        comment="Timestamp when record was created (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
        comment="Timestamp when record was last updated (UTC)"
    )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id})"

    def dict(self) -> dict[str, Any]:
        """Convert model instance to a plain dictionary of its columns."""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }


class BaseModel(Base, CommonTableAttributes):
    """Ready-to-use abstract base: Base + id/created_at/updated_at."""

    __abstract__ = True


# ================================
# Dialect-aware Column Types
# ================================

JSONType = JSON().with_variant(JSONB(), "postgresql")


def vector_type(dimension: int) -> TypeEngine:
    """pgvector column on PostgreSQL, JSON-encoded float list on SQLite."""
    return Vector(dimension).with_variant(JSON(), "sqlite")


# ================================
# String Length Constraints
# ================================
String50 = String(50)
String100 = String(100)
String255 = String(255)
String500 = String(500)
String1000 = String(1000)
