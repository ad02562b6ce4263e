"""
Tests for the LLM context formatter.
"""

from dataclasses import dataclass

import pytest

from app.models.embedding import ContentType
from app.services.rag.context_formatter import (
    GENERAL_SECTION_HEADER,
    PROJECT_SECTION_HEADER,
    format_context,
    format_match_header,
)
from app.services.rag.types import FactPayload, ProjectPayload, SearchResult


def fact_result(title="Skills", content="Proficient in TypeScript and Python.", similarity=0.87, content_id=1):
    return SearchResult(
        content_id=content_id,
        content_type=ContentType.FACT,
        similarity=similarity,
        payload=FactPayload(title=title, content=content),
    )


def project_result(title="Portfolio Website", similarity=0.642, content_id=10, **fields):
    fields.setdefault("summary", "A personal site with an AI assistant.")
    return SearchResult(
        content_id=content_id,
        content_type=ContentType.PROJECT,
        similarity=similarity,
        payload=ProjectPayload(title=title, slug=title.lower().replace(" ", "-"), **fields),
    )


class TestFormatContext:
    """Test context rendering."""

    def test_empty_results(self):
        assert format_context([]) == ""

    def test_single_fact(self):
        context = format_context([fact_result()])

        assert context
        assert "87.0%" in context
        assert context == (
            "GENERAL INFORMATION:\n"
            "[Skills - Match: 87.0%]\n"
            "Proficient in TypeScript and Python.\n\n"
        )

    def test_project_block(self):
        result = project_result(
            features=("Hybrid search", "Chat history"),
            url="https://example.com",
        )

        assert format_context([result]) == (
            "PROJECTS:\n"
            "[Portfolio Website - Match: 64.2%]\n"
            "A personal site with an AI assistant.\n"
            "\nKey Features:\n"
            "- Hybrid search\n"
            "- Chat history\n"
            "\nProject URL: https://example.com\n"
            "\n"
        )

    def test_project_without_features_or_url(self):
        context = format_context([project_result(summary=None)])

        assert "Key Features" not in context
        assert "Project URL" not in context
        assert context.startswith("PROJECTS:\n[Portfolio Website - Match: 64.2%]\n")

    def test_facts_come_before_projects(self):
        results = [
            project_result(similarity=0.95),
            fact_result(title="Education", similarity=0.7, content_id=2),
            fact_result(title="Skills", similarity=0.6, content_id=1),
        ]

        context = format_context(results)

        assert context.index(GENERAL_SECTION_HEADER) < context.index(PROJECT_SECTION_HEADER)
        # Ranking order is kept inside a section
        assert context.index("[Education") < context.index("[Skills")
        assert context.count(GENERAL_SECTION_HEADER) == 1

    def test_feature_limit(self):
        result = project_result(features=tuple(f"Feature {n}" for n in range(8)))

        context = format_context([result], max_features=3)

        assert "- Feature 2\n" in context
        assert "- Feature 3" not in context

    def test_long_fact_is_truncated(self):
        context = format_context([fact_result(content="word " * 100)], preview_chars=20)

        body = context.splitlines()[2]
        assert body.endswith("...")
        assert len(body) <= 23

    def test_unknown_payload_type(self):
        @dataclass(frozen=True)
        class VideoPayload:
            title: str

        result = SearchResult(
            content_id=1,
            content_type=ContentType.FACT,
            similarity=0.5,
            payload=VideoPayload(title="Demo"),
        )

        with pytest.raises(TypeError):
            format_context([result])


class TestMatchHeader:
    @pytest.mark.parametrize(
        "similarity, expected",
        [(0.87, "87.0%"), (1.0, "100.0%"), (0.0, "0.0%"), (0.12345, "12.3%")],
    )
    def test_percentage(self, similarity, expected):
        assert format_match_header("Skills", similarity) == f"[Skills - Match: {expected}]"
