"""
Hybrid Search Engine

Ranks indexed facts and projects for a query by fusing two signals:

1. Vector similarity (pgvector cosine on PostgreSQL, numpy elsewhere)
2. Lexical relevance (LexicalScorer word matching)

Pipeline:
---------
validate → embed query → load candidates (embedding + live item)
→ score each → fuse → threshold → type filter → sort → truncate

Fusion:
-------
fused = v + w * l * (1 - v)

- v: cosine similarity clamped to [0, 1]
- l: lexical score in [0, 1]
- w: SEARCH_LEXICAL_WEIGHT in [0, 1)

fused stays in [0, 1], never decreases when either signal grows, and the
lexical boost is at most w * (1 - v), so a keyword hit cannot overturn a
large vector gap. In lexical-only mode (query embedding failed and the
caller opted in) fused = l.

Ordering:
---------
fused desc, then item updated_at desc, then content_type, then content_id.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import EmbeddingFailure, SearchFailure
from app.core.retry import RetryPolicy, default_retry_policy
from app.models.content import Fact, Project
from app.models.embedding import ContentType, Embedding
from app.services.processors.embedder import TextEmbedder, cosine_similarity
from app.services.processors.text_search import LexicalScorer
from app.services.rag.context_formatter import format_context
from app.services.rag.types import FactPayload, ProjectPayload, SearchOutcome, SearchResult

logger = logging.getLogger(__name__)


ALL_CONTENT_TYPES = frozenset(ContentType)


def fuse_scores(vector_score: float, lexical_score: float, lexical_weight: float) -> float:
    """Combine vector and lexical scores (see module docstring)."""
    v = min(1.0, max(0.0, vector_score))
    lex = min(1.0, max(0.0, lexical_score))
    return v + lexical_weight * lex * (1.0 - v)


def normalize_content_types(
    content_types: Optional[Iterable[Any]],
) -> frozenset[ContentType]:
    """
    Coerce a collection of ContentType members or strings.

    None or an empty collection means every type.

    Raises:
        ValueError: For an unknown content type
    """
    if not content_types:
        return ALL_CONTENT_TYPES
    return frozenset(ContentType(value) for value in content_types)


def _recency(updated_at: Optional[datetime]) -> float:
    if updated_at is None:
        return 0.0
    if updated_at.tzinfo is None:
        # SQLite returns naive UTC timestamps
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return updated_at.timestamp()


class HybridSearchEngine:
    """
    Hybrid semantic + lexical search over the embedding index.

    Usage:
    ------
    engine = HybridSearchEngine(db, embedder)

    results = await engine.search(
        "What languages are used?",
        match_threshold=0.3,
        match_count=5,
        content_types={ContentType.FACT},
    )

    outcome = await engine.retrieve_context("Tell me about the Portfolio Website", timeout=12)
    if outcome.error:
        ...
    """

    def __init__(
        self,
        db: AsyncSession,
        embedder: TextEmbedder,
        lexical_scorer: Optional[LexicalScorer] = None,
        retry_policy: Optional[RetryPolicy] = None,
        lexical_weight: Optional[float] = None,
    ):
        """
        Args:
            db: Database session
            embedder: Query embedder (EmbeddingService or a test double)
            lexical_scorer: Word-match scorer (default: LexicalScorer())
            retry_policy: Retry policy for candidate loading
            lexical_weight: Fusion weight w (default: SEARCH_LEXICAL_WEIGHT)
        """
        self.db = db
        self.embedder = embedder
        self.lexical_scorer = lexical_scorer or LexicalScorer()
        self.retry_policy = retry_policy or default_retry_policy(retry_on=(SQLAlchemyError,))
        self.lexical_weight = (
            settings.SEARCH_LEXICAL_WEIGHT if lexical_weight is None else lexical_weight
        )

        if not 0.0 <= self.lexical_weight < 1.0:
            raise ValueError("lexical_weight must be in [0, 1)")

    # ================================
    # Public API
    # ================================

    async def search(
        self,
        query_text: str,
        match_threshold: Optional[float] = None,
        match_count: Optional[int] = None,
        content_types: Optional[Iterable[Any]] = None,
        lexical_fallback: bool = False,
    ) -> list[SearchResult]:
        """
        Rank indexed content for a query.

        Args:
            query_text: User query (non-blank)
            match_threshold: Minimum fused score in [0, 1] (default 0.5)
            match_count: Maximum number of results, >= 0 (default 5)
            content_types: Types to return (default: fact and project)
            lexical_fallback: Rank by words alone if the query cannot be
                embedded, instead of failing

        Returns:
            Up to match_count results, best first

        Raises:
            ValueError: Blank query, negative count, threshold out of range
            SearchFailure: Query embedding or candidate loading failed
        """
        threshold = settings.SEARCH_MATCH_THRESHOLD if match_threshold is None else match_threshold
        count = settings.SEARCH_MATCH_COUNT if match_count is None else match_count

        if not query_text or not query_text.strip():
            raise ValueError("Search query must not be empty")
        if count < 0:
            raise ValueError("match_count must be >= 0")
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("match_threshold must be within [0, 1]")

        types = normalize_content_types(content_types)

        if count == 0:
            return []

        query_vector = await self._embed_query(query_text, lexical_fallback)

        candidates = await self._load_with_retry(query_vector, types)

        scored = self._score_candidates(query_text, query_vector, candidates)

        results = [
            result for result in scored
            if result.similarity >= threshold and result.content_type in types
        ]
        results.sort(key=lambda r: (
            -r.similarity,
            -_recency(r.updated_at),
            r.content_type.value,
            r.content_id,
        ))

        logger.info(
            f"Hybrid search: {len(candidates)} candidates, "
            f"{len(results)} above threshold {threshold}, returning {min(count, len(results))}"
        )

        return results[:count]

    async def retrieve_context(
        self,
        query_text: str,
        match_threshold: Optional[float] = None,
        match_count: Optional[int] = None,
        content_types: Optional[Iterable[Any]] = None,
        timeout: Optional[float] = None,
    ) -> SearchOutcome:
        """
        Search and format the results into an LLM context block.

        Search failures and timeouts are returned as SearchOutcome.error
        instead of raised; invalid arguments still raise ValueError.
        """
        try:
            results = await asyncio.wait_for(
                self.search(
                    query_text,
                    match_threshold=match_threshold,
                    match_count=match_count,
                    content_types=content_types,
                ),
                timeout=timeout,
            )
        except SearchFailure as e:
            logger.warning(f"Search failed, continuing without context: {e}")
            return SearchOutcome(error=str(e))
        except asyncio.TimeoutError:
            logger.warning(f"Search timed out after {timeout}s, continuing without context")
            return SearchOutcome(error=f"search timed out after {timeout}s")

        return SearchOutcome(results=results, context=format_context(results))

    # ================================
    # Query Embedding
    # ================================

    async def _embed_query(
        self,
        query_text: str,
        lexical_fallback: bool,
    ) -> Optional[list[float]]:
        try:
            return await self.embedder.embed_text(query_text)
        except EmbeddingFailure as e:
            if not lexical_fallback:
                raise SearchFailure(f"Query embedding failed: {e}") from e
            logger.warning(f"Query embedding failed, ranking by lexical score only: {e}")
            return None

    # ================================
    # Candidate Loading
    # ================================

    async def _load_with_retry(
        self,
        query_vector: Optional[Sequence[float]],
        types: frozenset[ContentType],
    ) -> list[dict[str, Any]]:
        try:
            return await self.retry_policy.run(
                self._load_candidates,
                query_vector,
                types,
                operation="load_search_candidates",
            )
        except SQLAlchemyError as e:
            raise SearchFailure(f"Could not load search candidates: {e}") from e

    async def _load_candidates(
        self,
        query_vector: Optional[Sequence[float]],
        types: frozenset[ContentType],
    ) -> list[dict[str, Any]]:
        """
        Load every embedding whose content item still exists.

        Only the requested families are loaded. On PostgreSQL the vector
        score is computed by pgvector in the same query.
        """
        use_sql_distance = query_vector is not None and self._dialect_name() == "postgresql"
        candidates: list[dict[str, Any]] = []

        try:
            if ContentType.FACT in types:
                query = self._candidate_query(Fact, ContentType.FACT, query_vector, use_sql_distance)
                for row in (await self.db.execute(query)).all():
                    candidates.append(self._candidate(row, use_sql_distance))

            if ContentType.PROJECT in types:
                query = self._candidate_query(Project, ContentType.PROJECT, query_vector, use_sql_distance)
                for row in (await self.db.execute(query)).all():
                    candidates.append(self._candidate(row, use_sql_distance))
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        return candidates

    def _candidate_query(self, model, content_type, query_vector, use_sql_distance):
        columns = [Embedding, model]
        if use_sql_distance:
            columns.append(
                Embedding.embedding.cosine_distance(list(query_vector)).label("distance")
            )

        # Inner join drops orphaned embeddings
        return (
            select(*columns)
            .join(
                model,
                and_(
                    model.id == Embedding.content_id,
                    Embedding.content_type == content_type,
                ),
            )
        )

    @staticmethod
    def _candidate(row: Any, use_sql_distance: bool) -> dict[str, Any]:
        candidate = {"embedding": row[0], "item": row[1], "vector_score": None}
        if use_sql_distance and row[2] is not None:
            candidate["vector_score"] = min(1.0, max(0.0, 1.0 - float(row[2])))
        return candidate

    def _dialect_name(self) -> str:
        return self.db.get_bind().dialect.name

    # ================================
    # Scoring
    # ================================

    def _score_candidates(
        self,
        query_text: str,
        query_vector: Optional[Sequence[float]],
        candidates: list[dict[str, Any]],
    ) -> list[SearchResult]:
        results = []
        for candidate in candidates:
            record: Embedding = candidate["embedding"]
            try:
                results.append(self._score_one(query_text, query_vector, candidate))
            except Exception as e:
                logger.warning(
                    f"Skipping {record.content_type} {record.content_id} during scoring: {e}"
                )
        return results

    def _score_one(
        self,
        query_text: str,
        query_vector: Optional[Sequence[float]],
        candidate: dict[str, Any],
    ) -> SearchResult:
        record: Embedding = candidate["embedding"]
        item = candidate["item"]

        if isinstance(item, Fact):
            payload = FactPayload.from_model(item)
            lexical = self.lexical_scorer.score(
                query_text,
                title=item.title,
                body=item.content,
                keywords=[*(item.keywords or []), item.category or ""],
            )
        elif isinstance(item, Project):
            payload = ProjectPayload.from_model(item)
            lexical = self.lexical_scorer.score(
                query_text,
                title=item.title,
                body=" ".join(filter(None, [item.summary, item.description, *(item.features or [])])),
                keywords=[*item.tool_names, *item.tag_names],
            )
        else:
            raise TypeError(f"Unsupported content item: {type(item).__name__}")

        if query_vector is None:
            vector = 0.0
            fused = lexical
        else:
            vector = candidate["vector_score"]
            if vector is None:
                vector = cosine_similarity(query_vector, record.embedding)
            fused = fuse_scores(vector, lexical, self.lexical_weight)

        return SearchResult(
            content_id=record.content_id,
            content_type=record.content_type,
            similarity=fused,
            payload=payload,
            vector_score=vector,
            lexical_score=lexical,
            updated_at=item.updated_at,
        )


def create_search_engine(db: AsyncSession, embedder: TextEmbedder) -> HybridSearchEngine:
    """
    Create a hybrid search engine.

    Example:
        >>> engine = create_search_engine(db, embedder)
        >>> results = await engine.search("Which projects use FastAPI?")
    """
    return HybridSearchEngine(db, embedder)
