"""
Retrieval Result Types

Typed payloads for search results.

Payloads form a closed union: every SearchResult carries either a
FactPayload or a ProjectPayload. Code that renders or inspects payloads
dispatches on the payload class and raises TypeError for anything else
(see context_formatter.py), so a new content type has to be handled
explicitly everywhere it flows.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from app.models.content import Fact, Project
from app.models.embedding import ContentType


# ================================
# Payloads
# ================================

@dataclass(frozen=True)
class FactPayload:
    """Display data of a fact."""

    title: str
    content: str
    category: Optional[str] = None
    keywords: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, fact: Fact) -> "FactPayload":
        return cls(
            title=fact.title,
            content=fact.content,
            category=fact.category,
            keywords=tuple(fact.keywords or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "keywords": list(self.keywords),
        }


@dataclass(frozen=True)
class ProjectPayload:
    """Display data of a project."""

    title: str
    slug: str
    summary: Optional[str] = None
    description: Optional[str] = None
    features: tuple[str, ...] = ()
    url: Optional[str] = None
    tools: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, project: Project) -> "ProjectPayload":
        return cls(
            title=project.title,
            slug=project.slug,
            summary=project.summary,
            description=project.description,
            features=tuple(project.features or ()),
            url=project.url,
            tools=tuple(project.tool_names),
            tags=tuple(project.tag_names),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "slug": self.slug,
            "summary": self.summary,
            "description": self.description,
            "features": list(self.features),
            "url": self.url,
            "tools": list(self.tools),
            "tags": list(self.tags),
        }


Payload = Union[FactPayload, ProjectPayload]


# ================================
# Search Results
# ================================

@dataclass(frozen=True)
class SearchResult:
    """
    One ranked search hit.

    similarity is the fused score in [0, 1]; vector_score and lexical_score
    are the two inputs, kept for debugging and tests.
    """

    content_id: int
    content_type: ContentType
    similarity: float
    payload: Payload
    vector_score: float = 0.0
    lexical_score: float = 0.0
    updated_at: Optional[datetime] = None

    @property
    def title(self) -> str:
        return self.payload.title

    @property
    def content_key(self) -> tuple[str, int]:
        return (self.content_type.value, self.content_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_id": self.content_id,
            "content_type": self.content_type.value,
            "similarity": round(self.similarity, 4),
            "vector_score": round(self.vector_score, 4),
            "lexical_score": round(self.lexical_score, 4),
            "content": self.payload.to_dict(),
        }


@dataclass
class SearchOutcome:
    """
    Result of a search-and-format step that is allowed to fail softly.

    error is None on success. When it is set, results is empty and context
    is "" and the caller decides whether to continue without context.
    """

    results: list[SearchResult] = field(default_factory=list)
    context: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
