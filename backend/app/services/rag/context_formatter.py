"""
Context Formatter

Renders ranked search results into the context block of the LLM prompt.

Output layout:
--------------
GENERAL INFORMATION:
[Skills - Match: 87.0%]
Proficient in TypeScript and Python.

PROJECTS:
[Portfolio Website - Match: 64.2%]
A personal site with an AI assistant.

Key Features:
- Hybrid search
- Chat history

Project URL: https://example.com

Facts always come before projects; within a section the input (ranking)
order is kept. An empty result list renders as "".
"""

from typing import Optional, Sequence

from app.core.config import settings
from app.services.rag.types import FactPayload, ProjectPayload, SearchResult


GENERAL_SECTION_HEADER = "GENERAL INFORMATION:"
PROJECT_SECTION_HEADER = "PROJECTS:"


def format_context(
    results: Sequence[SearchResult],
    *,
    max_features: Optional[int] = None,
    preview_chars: Optional[int] = None,
) -> str:
    """
    Format search results as an LLM context string.

    Args:
        results: Ranked results (any mix of facts and projects)
        max_features: Feature bullets per project (default CONTEXT_MAX_FEATURES)
        preview_chars: Max fact body length (default CONTEXT_PREVIEW_CHARS)

    Returns:
        Context string, or "" when there are no results

    Raises:
        TypeError: If a result carries an unknown payload type
    """
    if not results:
        return ""

    max_features = settings.CONTEXT_MAX_FEATURES if max_features is None else max_features
    preview_chars = settings.CONTEXT_PREVIEW_CHARS if preview_chars is None else preview_chars

    facts: list[SearchResult] = []
    projects: list[SearchResult] = []
    for result in results:
        if isinstance(result.payload, FactPayload):
            facts.append(result)
        elif isinstance(result.payload, ProjectPayload):
            projects.append(result)
        else:
            raise TypeError(f"Cannot format payload of type {type(result.payload).__name__}")

    context = ""

    if facts:
        context += f"{GENERAL_SECTION_HEADER}\n"
        for result in facts:
            context += _format_fact(result, preview_chars)

    if projects:
        context += f"{PROJECT_SECTION_HEADER}\n"
        for result in projects:
            context += _format_project(result, max_features)

    return context if context.strip() else ""


def format_match_header(title: str, similarity: float) -> str:
    return f"[{title} - Match: {similarity * 100:.1f}%]"


def _format_fact(result: SearchResult, preview_chars: int) -> str:
    payload: FactPayload = result.payload
    body = _preview(payload.content, preview_chars)
    return f"{format_match_header(payload.title, result.similarity)}\n{body}\n\n"


def _format_project(result: SearchResult, max_features: int) -> str:
    payload: ProjectPayload = result.payload
    text = f"{format_match_header(payload.title, result.similarity)}\n"
    text += f"{payload.summary or ''}\n"

    features = list(payload.features)[:max_features]
    if features:
        text += "\nKey Features:\n"
        for feature in features:
            text += f"- {feature}\n"

    if payload.url:
        text += f"\nProject URL: {payload.url}\n"

    return text + "\n"


def _preview(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."
