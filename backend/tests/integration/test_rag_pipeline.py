"""
Integration tests for the complete portfolio assistant pipeline.

Tests the full flow end to end:
- Facts/Projects → Canonical text → Embedding → Storage
- Query → Hybrid search → Context → Generation → Project link → History
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient

from app.core.config import settings
from app.tasks.embedding_tasks import index_all_content_async, remove_content_embedding_async


pytestmark = pytest.mark.integration

API = settings.API_V1_PREFIX


# ================================
# Fixtures
# ================================

@pytest_asyncio.fixture
async def indexed_content(session_factory, embedder, make_fact, make_project):
    """A small portfolio indexed through the Celery task body."""
    skills = await make_fact(
        "Skills",
        "Proficient in TypeScript and Python.",
        category="skills",
    )
    education = await make_fact("Education", "Studied computer science at university.")
    site = await make_project(
        "Portfolio Website",
        summary="A personal site with a chat assistant.",
        features=["Chat assistant", "Project gallery"],
        url="https://example.com",
        tools=["Next.js", "TypeScript"],
        images=["https://cdn.example.com/site-1.png", "https://cdn.example.com/site-2.png"],
    )

    report = await index_all_content_async(session_factory=session_factory, embedder=embedder)
    assert report['created'] == 3

    return {"skills": skills, "education": education, "site": site}


# ================================
# Pipeline Tests
# ================================

@pytest.mark.asyncio
async def test_search_ranks_relevant_fact_first(client: AsyncClient, indexed_content):
    response = await client.post(
        f"{API}/search",
        json={"query": "Which programming languages are you proficient in?"},
    )

    data = response.json()
    assert response.status_code == 200
    assert data["results"][0]["content_id"] == indexed_content["skills"].id
    assert data["context"].startswith("GENERAL INFORMATION:")
    assert "Education" not in data["context"]


@pytest.mark.asyncio
async def test_chat_conversation_with_project_card(client: AsyncClient, generator, indexed_content):
    first = (await client.post(
        f"{API}/chat",
        json={"message": "What did you study?", "session_key": "visitor-1"},
    )).json()

    second = (await client.post(
        f"{API}/chat",
        json={"message": "Tell me about the Portfolio Website", "session_key": "visitor-1"},
    )).json()

    assert first["session_id"] == second["session_id"]
    assert first["relevant_project"] is None
    assert second["relevant_project"]["id"] == indexed_content["site"].id
    assert second["project_image"] == "https://cdn.example.com/site-1.png"

    # The second request carried the first exchange as history
    assert generator.requests[1].history == [
        {"role": "user", "content": "What did you study?"},
        {"role": "assistant", "content": generator.reply},
    ]
    assert "Portfolio Website" in generator.requests[1].context

    history = (await client.get(
        f"{API}/chat/history",
        params={"session_key": "visitor-1"},
    )).json()

    assert history["count"] == 4
    assert [message["project_image"] for message in history["messages"]] == [
        None,
        None,
        None,
        "https://cdn.example.com/site-1.png",
    ]

    sessions = (await client.get(f"{API}/chat/sessions")).json()["sessions"]
    assert sessions[0]["title"] == "What did you study?"


@pytest.mark.asyncio
async def test_removed_content_is_no_longer_found(client: AsyncClient, session_factory, indexed_content):
    site_id = indexed_content["site"].id
    await remove_content_embedding_async("project", site_id, session_factory=session_factory)

    response = await client.post(
        f"{API}/search",
        json={"query": "portfolio website", "match_threshold": 0.0, "content_types": ["project"]},
    )

    assert response.json()["results"] == []
