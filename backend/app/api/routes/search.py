"""
Search API Routes

Hybrid (vector + lexical) search over facts and projects, returning the
ranked results together with the formatted LLM context block.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from app.api.deps import EmbedderDep
from app.core.exceptions import SearchFailure
from app.db.deps import DBSession
from app.schemas.search import SearchRequest, SearchResponse, SearchResultItem
from app.services.rag.context_formatter import format_context
from app.services.rag.search import create_search_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SearchResponse)
async def search(
    search_request: SearchRequest,
    db: DBSession,
    embedder: EmbedderDep,
):
    """
    Rank facts and projects for a query.

    Args:
        search_request: Query and optional threshold, count and type filter
        db: Database session
        embedder: Embedding model

    Returns:
        Ranked results (best first) and the formatted context

    Raises:
        400: Blank query
        503: Query embedding or candidate loading failed
    """
    engine = create_search_engine(db, embedder)

    try:
        results = await engine.search(
            search_request.query,
            match_threshold=search_request.match_threshold,
            match_count=search_request.match_count,
            content_types=search_request.content_types,
            lexical_fallback=search_request.lexical_fallback,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except SearchFailure as e:
        logger.error(f"Search failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search is temporarily unavailable"
        )

    return SearchResponse(
        results=[SearchResultItem.from_result(result) for result in results],
        context=format_context(results),
    )
