"""
Tests for HybridSearchEngine.

Vectors come from the concept embedder in conftest.py, so "languages" and
"TypeScript" land on the same axis while "weather" lands on another.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from app.core.exceptions import SearchFailure
from app.core.retry import RetryPolicy
from app.models.embedding import ContentType
from app.services.processors.indexer import ContentIndexer
from app.services.rag.search import (
    ALL_CONTENT_TYPES,
    HybridSearchEngine,
    create_search_engine,
    fuse_scores,
    normalize_content_types,
)
from app.services.rag.types import FactPayload, ProjectPayload


async def index(db, embedder):
    report = await ContentIndexer(db, embedder).index_all()
    assert report.failed == 0
    return report


@pytest_asyncio.fixture
async def portfolio(db_session, embedder, make_fact, make_project):
    """A small indexed portfolio."""
    skills = await make_fact("Skills", "Proficient in TypeScript and Python.", category="skills")
    education = await make_fact("Education", "Studied computer science at university.")
    weather = await make_fact("Weather", "The forecast says rain.")
    site = await make_project(
        "Portfolio Website",
        summary="A personal site with a chat assistant.",
        features=["Chat assistant", "Project gallery"],
        tools=["Next.js", "TypeScript"],
    )
    toolkit = await make_project(
        "Python Toolkit",
        summary="Programming utilities written in Python.",
        tools=["Python"],
    )
    await index(db_session, embedder)
    return {
        "skills": skills,
        "education": education,
        "weather": weather,
        "site": site,
        "toolkit": toolkit,
    }


# ========================================
# Fusion
# ========================================

class TestFuseScores:
    """Test the vector/lexical fusion."""

    def test_no_lexical_signal(self):
        assert fuse_scores(0.42, 0.0, 0.2) == pytest.approx(0.42)

    def test_lexical_boost(self):
        assert fuse_scores(0.5, 1.0, 0.2) == pytest.approx(0.6)

    def test_perfect_vector_score_stays_one(self):
        assert fuse_scores(1.0, 1.0, 0.2) == pytest.approx(1.0)

    def test_inputs_are_clamped(self):
        assert fuse_scores(-0.3, 2.0, 0.2) == pytest.approx(0.2)

    @pytest.mark.parametrize("vector", [0.0, 0.25, 0.5, 0.75, 1.0])
    def test_monotonic_in_lexical_score(self, vector):
        scores = [fuse_scores(vector, lexical, 0.2) for lexical in (0.0, 0.3, 0.6, 1.0)]
        assert scores == sorted(scores)
        assert all(0.0 <= score <= 1.0 for score in scores)

    @pytest.mark.parametrize("lexical", [0.0, 0.5, 1.0])
    def test_monotonic_in_vector_score(self, lexical):
        scores = [fuse_scores(vector, lexical, 0.2) for vector in (0.0, 0.3, 0.6, 1.0)]
        assert scores == sorted(scores)


class TestNormalizeContentTypes:
    def test_none_means_all(self):
        assert normalize_content_types(None) == ALL_CONTENT_TYPES
        assert normalize_content_types([]) == ALL_CONTENT_TYPES

    def test_strings_and_members(self):
        assert normalize_content_types(["fact"]) == {ContentType.FACT}
        assert normalize_content_types([ContentType.PROJECT, "project"]) == {ContentType.PROJECT}

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            normalize_content_types(["video"])


# ========================================
# Search
# ========================================

@pytest.mark.asyncio
class TestSearch:
    """Test ranking, thresholds and filters."""

    async def test_language_question_finds_skills_fact(self, db_session, embedder, make_fact):
        fact = await make_fact("Skills", "Proficient in TypeScript and Python.")
        await index(db_session, embedder)

        engine = create_search_engine(db_session, embedder)
        results = await engine.search("What languages are used?", match_threshold=0.3)

        assert len(results) == 1
        result = results[0]
        assert result.content_type == ContentType.FACT
        assert result.content_id == fact.id
        assert result.similarity > 0.3
        assert isinstance(result.payload, FactPayload)
        assert result.title == "Skills"

    async def test_unrelated_content_below_threshold(self, db_session, embedder, portfolio):
        engine = HybridSearchEngine(db_session, embedder)

        results = await engine.search("What languages are used?", match_threshold=0.3)
        keys = {result.content_key for result in results}

        assert ("fact", portfolio["skills"].id) in keys
        assert ("fact", portfolio["weather"].id) not in keys
        assert all(result.similarity >= 0.3 for result in results)

    async def test_results_are_ranked_best_first(self, db_session, embedder, portfolio):
        engine = HybridSearchEngine(db_session, embedder)

        results = await engine.search("python programming languages", match_threshold=0.0, match_count=10)

        similarities = [result.similarity for result in results]
        assert similarities == sorted(similarities, reverse=True)
        assert len(results) == 5

    async def test_equal_scores_newest_first_then_by_id(self, db_session, embedder, make_fact):
        older_a = await make_fact("Skills", "Proficient in TypeScript and Python.")
        older_b = await make_fact("Skills", "Proficient in TypeScript and Python.")
        newest = await make_fact("Skills", "Proficient in TypeScript and Python.")
        older_a.updated_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        older_b.updated_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        newest.updated_at = datetime(2024, 6, 1, tzinfo=timezone.utc)
        await db_session.commit()
        await index(db_session, embedder)

        results = await HybridSearchEngine(db_session, embedder).search(
            "typescript", match_threshold=0.0, match_count=10
        )

        assert len({result.similarity for result in results}) == 1
        assert [result.content_id for result in results] == [newest.id, older_a.id, older_b.id]

    async def test_match_count_bounds_results(self, db_session, embedder, portfolio):
        engine = HybridSearchEngine(db_session, embedder)

        assert len(await engine.search("python", match_threshold=0.0, match_count=2)) == 2
        assert await engine.search("python", match_threshold=0.0, match_count=0) == []

    async def test_zero_count_does_not_embed(self, db_session, embedder):
        engine = HybridSearchEngine(db_session, embedder)

        assert await engine.search("python", match_count=0) == []
        assert embedder.calls == []

    async def test_type_filter(self, db_session, embedder, portfolio):
        engine = HybridSearchEngine(db_session, embedder)

        results = await engine.search(
            "python languages", match_threshold=0.0, match_count=10, content_types=["project"]
        )

        assert results
        assert {result.content_type for result in results} == {ContentType.PROJECT}
        assert all(isinstance(result.payload, ProjectPayload) for result in results)

    async def test_type_filter_applies_before_truncation(self, db_session, embedder, portfolio):
        """A single slot still goes to a project when facts score higher."""
        engine = HybridSearchEngine(db_session, embedder)

        unfiltered = await engine.search("python languages", match_threshold=0.0, match_count=1)
        filtered = await engine.search(
            "python languages", match_threshold=0.0, match_count=1, content_types=[ContentType.PROJECT]
        )

        assert unfiltered[0].content_type == ContentType.FACT
        assert len(filtered) == 1
        assert filtered[0].content_type == ContentType.PROJECT

    async def test_orphaned_embeddings_are_excluded(self, db_session, embedder, make_fact):
        fact = await make_fact("Skills", "Proficient in TypeScript and Python.")
        await index(db_session, embedder)

        await db_session.delete(fact)
        await db_session.commit()

        engine = HybridSearchEngine(db_session, embedder)
        assert await engine.search("What languages are used?", match_threshold=0.0) == []

    async def test_project_payload(self, db_session, embedder, portfolio):
        engine = HybridSearchEngine(db_session, embedder)

        results = await engine.search(
            "portfolio website", match_threshold=0.3, content_types=["project"]
        )

        assert results[0].content_id == portfolio["site"].id
        payload = results[0].payload
        assert payload.slug == "portfolio-website"
        assert payload.tools == ("Next.js", "TypeScript")
        assert payload.features == ("Chat assistant", "Project gallery")
        assert results[0].lexical_score == 1.0

    async def test_lexical_match_boosts_score(self, db_session, embedder, portfolio):
        boosted = HybridSearchEngine(db_session, embedder, lexical_weight=0.5)
        vector_only = HybridSearchEngine(db_session, embedder, lexical_weight=0.0)

        query = "portfolio website"
        with_words = await boosted.search(query, match_threshold=0.0, content_types=["project"])
        without_words = await vector_only.search(query, match_threshold=0.0, content_types=["project"])

        assert with_words[0].similarity > without_words[0].similarity
        assert without_words[0].similarity == pytest.approx(without_words[0].vector_score)

    @pytest.mark.parametrize("query", ["", "   "])
    async def test_blank_query(self, db_session, embedder, query):
        with pytest.raises(ValueError):
            await HybridSearchEngine(db_session, embedder).search(query)

    async def test_invalid_arguments(self, db_session, embedder):
        engine = HybridSearchEngine(db_session, embedder)

        with pytest.raises(ValueError):
            await engine.search("python", match_count=-1)
        with pytest.raises(ValueError):
            await engine.search("python", match_threshold=1.5)
        with pytest.raises(ValueError):
            await engine.search("python", content_types=["video"])

    async def test_invalid_lexical_weight(self, db_session, embedder):
        with pytest.raises(ValueError):
            HybridSearchEngine(db_session, embedder, lexical_weight=1.0)


# ========================================
# Failures
# ========================================

@pytest.mark.asyncio
class TestSearchFailures:
    """Test embedding and store failures."""

    async def test_embedding_failure_raises_search_failure(self, db_session, failing_embedder, portfolio):
        engine = HybridSearchEngine(db_session, failing_embedder)

        with pytest.raises(SearchFailure, match="Query embedding failed"):
            await engine.search("What languages are used?")

    async def test_lexical_fallback(self, db_session, failing_embedder, portfolio):
        engine = HybridSearchEngine(db_session, failing_embedder)

        results = await engine.search(
            "portfolio website", match_threshold=0.5, lexical_fallback=True
        )

        assert results[0].content_id == portfolio["site"].id
        assert results[0].vector_score == 0.0
        assert results[0].similarity == results[0].lexical_score == 1.0

    async def test_candidate_loading_is_retried(self, db_session, embedder):
        engine = HybridSearchEngine(
            db_session,
            embedder,
            retry_policy=RetryPolicy(max_attempts=2, backoff_seconds=0, retry_on=(OperationalError,)),
        )
        error = OperationalError("SELECT embeddings", {}, Exception("connection reset"))

        with patch.object(engine, "_load_candidates", new=AsyncMock(side_effect=error)) as load:
            with pytest.raises(SearchFailure, match="Could not load search candidates"):
                await engine.search("python")

        assert load.await_count == 2


@pytest.mark.asyncio
class TestRetrieveContext:
    """Test search + formatting with soft failures."""

    async def test_success(self, db_session, embedder, portfolio):
        engine = HybridSearchEngine(db_session, embedder)

        outcome = await engine.retrieve_context("What languages are used?", match_threshold=0.3)

        assert outcome.ok
        assert outcome.results
        assert outcome.context.startswith("GENERAL INFORMATION:")
        assert "[Skills - Match:" in outcome.context

    async def test_no_matches(self, db_session, embedder, portfolio):
        engine = HybridSearchEngine(db_session, embedder)

        outcome = await engine.retrieve_context("recipe for cooking food", match_threshold=0.9)

        assert outcome.ok
        assert outcome.results == []
        assert outcome.context == ""

    async def test_search_failure_becomes_error_outcome(self, db_session, failing_embedder, portfolio):
        engine = HybridSearchEngine(db_session, failing_embedder)

        outcome = await engine.retrieve_context("What languages are used?")

        assert not outcome.ok
        assert "embedding failed" in outcome.error
        assert outcome.results == []
        assert outcome.context == ""

    async def test_invalid_arguments_still_raise(self, db_session, embedder):
        engine = HybridSearchEngine(db_session, embedder)

        with pytest.raises(ValueError):
            await engine.retrieve_context("")
