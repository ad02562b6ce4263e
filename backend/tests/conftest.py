"""
Pytest configuration and fixtures.

This file is automatically discovered by pytest and provides
shared fixtures for all test modules.

Every test gets its own in-memory SQLite database (aiosqlite) with all
tables created, so tests never need PostgreSQL, a model download or an
Anthropic key. The embedding model and the LLM are replaced by the
deterministic doubles below.

References:
-----------
- Pytest Fixtures: https://docs.pytest.org/en/stable/fixture.html
- FastAPI Testing: https://fastapi.tiangolo.com/advanced/async-tests/
"""

import math
import os
import re
from typing import AsyncGenerator, AsyncIterator, Optional

# Settings are read at import time, so the test environment goes first
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("EMBEDDING_INDEX_BATCH_DELAY_SECONDS", "0")
os.environ.setdefault("RETRY_BACKOFF_SECONDS", "0")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("PORTFOLIO_OWNER_NAME", "")
os.environ.setdefault("PROJECT_ALIASES", "")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

import app.models  # noqa: F401
from app.core.exceptions import EmbeddingFailure
from app.db.base import Base
from app.db.session import create_engine, create_session_factory
from app.models.content import Fact, Project, ProjectImage, Tag, Tool
from app.services.rag.generator import GenerationRequest


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ================================
# Test Doubles
# ================================

# Words sharing a dimension are "semantically close" for the fake model
CONCEPTS = {
    "language": 0, "languages": 0, "typescript": 0, "python": 0,
    "javascript": 0, "programming": 0, "proficient": 0,
    "portfolio": 1, "website": 1, "site": 1, "next.js": 1, "personal": 1,
    "chat": 2, "assistant": 2, "chatbot": 2, "conversation": 2,
    "machine": 3, "learning": 3, "model": 3, "ml": 3,
    "experience": 4, "career": 4, "job": 4, "worked": 4,
    "education": 5, "degree": 5, "university": 5, "studied": 5,
    "project": 6, "projects": 6, "built": 6,
    "weather": 7, "forecast": 7, "climate": 7,
    "recipe": 8, "cooking": 8, "food": 8,
}
FAKE_DIMENSION = 12
# Small constant component so no text maps to the zero vector
BASELINE_WEIGHT = 0.05


def concept_vector(text: str) -> list[float]:
    """Deterministic unit vector: one dimension per concept group."""
    vector = [0.0] * FAKE_DIMENSION
    for token in re.findall(r"[a-z0-9.#+]+", text.lower()):
        index = CONCEPTS.get(token.strip("."))
        if index is not None:
            vector[index] += 1.0
    vector[-1] += BASELINE_WEIGHT
    norm = math.sqrt(sum(value * value for value in vector))
    return [value / norm for value in vector]


class FakeEmbedder:
    """TextEmbedder double backed by concept_vector()."""

    model_name = "fake-concept-embedder"

    def __init__(self, fail: bool = False, fail_on: Optional[str] = None):
        self.fail = fail
        self.fail_on = fail_on
        self.calls: list[str] = []

    async def embed_text(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        self.calls.append(text)
        if self.fail or (self.fail_on and self.fail_on in text):
            raise EmbeddingFailure("fake embedder unavailable", model=self.model_name)
        return concept_vector(text)


class FakeGenerator:
    """ResponseGenerator double that records every request."""

    def __init__(self, reply: str = "<p>Hello! Ask me about my projects.</p>", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.requests: list[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.reply

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Yield the reply in 8-character chunks; `error` is raised after the first one."""
        self.requests.append(request)
        for start in range(0, len(self.reply), 8):
            yield self.reply[start:start + 8]
            if self.error is not None:
                raise self.error


# ================================
# Database Fixtures
# ================================

@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    In-memory SQLite engine with all tables created.

    StaticPool (see get_engine_config) keeps one shared connection, so every
    session of the test sees the same database.
    """
    engine = create_engine(TEST_DATABASE_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A database session for each test (services commit their own work)."""
    async with session_factory() as session:
        yield session


# ================================
# Service Double Fixtures
# ================================

@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def failing_embedder() -> FakeEmbedder:
    return FakeEmbedder(fail=True)


@pytest.fixture
def embedder_factory() -> type[FakeEmbedder]:
    """The FakeEmbedder class, for tests that need a custom double."""
    return FakeEmbedder


@pytest.fixture
def generator_factory() -> type[FakeGenerator]:
    """The FakeGenerator class, for tests that need a custom double."""
    return FakeGenerator


# ================================
# FastAPI Client Fixtures
# ================================

@pytest_asyncio.fixture
async def client(
    test_engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    embedder: FakeEmbedder,
    generator: FakeGenerator,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for the FastAPI app.

    ASGITransport does not run the lifespan, so app.state is populated here
    with the test engine and the doubles.

    Usage:
        async def test_something(client: AsyncClient):
            response = await client.get("/api/v1/chat/sessions")
            assert response.status_code == 200
    """
    from app.main import app

    app.state.engine = test_engine
    app.state.session_factory = session_factory
    app.state.embedder = embedder
    app.state.generator = generator

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    for name in ("engine", "session_factory", "embedder", "generator"):
        setattr(app.state, name, None)


# ================================
# Content Helpers
# ================================

async def add_fact(
    db: AsyncSession,
    title: str,
    content: str,
    category: Optional[str] = None,
    keywords: Optional[list[str]] = None,
) -> Fact:
    fact = Fact(title=title, content=content, category=category, keywords=keywords or [])
    db.add(fact)
    await db.commit()
    return fact


async def add_project(
    db: AsyncSession,
    title: str,
    slug: Optional[str] = None,
    summary: Optional[str] = None,
    description: Optional[str] = None,
    features: Optional[list[str]] = None,
    url: Optional[str] = None,
    tools: Optional[list[str]] = None,
    tags: Optional[list[str]] = None,
    images: Optional[list[str]] = None,
) -> Project:
    project = Project(
        title=title,
        slug=slug or re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-"),
        summary=summary,
        description=description,
        features=features or [],
        url=url,
        tools=[Tool(name=name) for name in tools or []],
        tags=[Tag(name=name) for name in tags or []],
        images=[
            ProjectImage(url=image_url, order_index=index)
            for index, image_url in enumerate(images or [])
        ],
    )
    db.add(project)
    await db.commit()
    return project


# Bound to the test session so tests can await make_fact(...) directly
@pytest.fixture
def make_fact(db_session: AsyncSession):
    async def _make(title: str, content: str, **kwargs) -> Fact:
        return await add_fact(db_session, title, content, **kwargs)
    return _make


@pytest.fixture
def make_project(db_session: AsyncSession):
    async def _make(title: str, **kwargs) -> Project:
        return await add_project(db_session, title, **kwargs)
    return _make


# ================================
# Pytest Hooks
# ================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (runs against the ASGI app)"
    )
