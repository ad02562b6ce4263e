"""
Pydantic schemas for the Search API

Request/response models for hybrid search over facts and projects.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    """Request schema for hybrid search."""

    query: str = Field(
        description="Search query",
        min_length=1,
        max_length=2000
    )

    match_threshold: Optional[float] = Field(
        default=None,
        description="Minimum fused similarity (default SEARCH_MATCH_THRESHOLD)",
        ge=0.0,
        le=1.0
    )

    match_count: Optional[int] = Field(
        default=None,
        description="Maximum number of results (default SEARCH_MATCH_COUNT)",
        ge=0,
        le=50
    )

    content_types: Optional[List[Literal["fact", "project"]]] = Field(
        default=None,
        description="Content types to return (default: all)"
    )

    lexical_fallback: bool = Field(
        default=False,
        description="Rank by words alone if the query cannot be embedded"
    )


class SearchResultItem(BaseModel):
    """One ranked search result."""

    content_id: int = Field(description="Fact or project ID")
    content_type: Literal["fact", "project"] = Field(description="Content type")
    title: str = Field(description="Fact or project title")
    similarity: float = Field(description="Fused similarity in [0, 1]")
    vector_score: float = Field(description="Cosine similarity component")
    lexical_score: float = Field(description="Lexical match component")
    content: Dict[str, Any] = Field(description="Display payload of the item")

    @classmethod
    def from_result(cls, result) -> "SearchResultItem":
        data = result.to_dict()
        return cls(title=result.title, **data)


class SearchResponse(BaseModel):
    """Response schema for hybrid search."""

    results: List[SearchResultItem] = Field(description="Ranked results, best first")
    context: str = Field(description="Results formatted as an LLM context block")
