"""
Embedding Model

One stored vector per content item, keyed by (content_id, content_type).

Table: embeddings
-----------------
- content_id + content_type: the addressable key of a Fact or Project
  (polymorphic, so there is no foreign key; orphans are excluded at query
  time and removed by ContentIndexer.prune_orphaned_embeddings())
- embedding: pgvector VECTOR(EMBEDDING_DIMENSION) on PostgreSQL with an HNSW
  cosine index (see the Alembic migration), JSON float list on SQLite
- embedded_text: the exact canonical text that was embedded

Rows are created and overwritten only by the ContentIndexer.
"""

import enum
from typing import Any, Optional

from sqlalchemy import Enum, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.config import settings
from app.db.base import BaseModel, JSONType, String255, vector_type


# ================================
# Enums
# ================================

class ContentType(str, enum.Enum):
    """
    Kind of content an embedding belongs to.

    - FACT: app.models.content.Fact
    - PROJECT: app.models.content.Project
    """

    FACT = "fact"
    PROJECT = "project"

    def __str__(self) -> str:
        return self.value


def enum_values(enum_class: type[enum.Enum]) -> list[str]:
    """Persist enum values ("fact") rather than member names ("FACT")."""
    return [member.value for member in enum_class]


# ================================
# Embedding Model
# ================================

class Embedding(BaseModel):
    """
    Vector representation of one content item.

    Example:
    --------
    Embedding(
        content_id=fact.id,
        content_type=ContentType.FACT,
        embedding=[0.01, -0.2, ...],
        embedded_text="Languages: I mostly write TypeScript and Python.",
        embedding_model="sentence-transformers/all-MiniLM-L6-v2",
    )
    """

    __tablename__ = "embeddings"

    content_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Primary key of the fact or project"
    )

    content_type: Mapped[ContentType] = mapped_column(
        Enum(
            ContentType,
            name="content_type",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        index=True,
        comment="fact or project"
    )

    embedding: Mapped[Any] = mapped_column(
        vector_type(settings.EMBEDDING_DIMENSION),
        nullable=False,
        comment="Normalized embedding vector"
    )

    embedded_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Exact text that produced the vector"
    )

    embedding_model: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        comment="Model identifier used to embed"
    )

    chunk_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Chunk position (single-chunk items use 0)"
    )

    chunk_metadata: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Free-form metadata about the embedded chunk"
    )

    __table_args__ = (
        UniqueConstraint(
            "content_id",
            "content_type",
            name="uq_embeddings_content_key"
        ),
        # At most one active embedding per content item
    )

    def __repr__(self) -> str:
        return (
            f"Embedding(id={self.id}, content_type={self.content_type}, "
            f"content_id={self.content_id})"
        )

    @property
    def content_key(self) -> tuple[str, int]:
        return (str(self.content_type), self.content_id)
