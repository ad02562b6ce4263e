"""
Tests for the ORM models and the database session helpers.

These run against the in-memory SQLite engine from conftest.py.
"""

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from app.db.session import check_db_health, get_engine_config, get_session
from app.models import (
    ChatMessage,
    ChatProjectLink,
    ContentType,
    ConversationSession,
    Embedding,
    Fact,
    MessageRole,
    Project,
)


def make_embedding(content_id, content_type=ContentType.FACT):
    return Embedding(
        content_id=content_id,
        content_type=content_type,
        embedding=[0.1, 0.2, 0.3],
        embedded_text="Skills: Python",
        embedding_model="test-model",
    )


@pytest.mark.asyncio
class TestConstraints:
    """Uniqueness rules the services rely on."""

    async def test_one_embedding_per_content_key(self, db_session):
        db_session.add(make_embedding(1))
        await db_session.commit()

        db_session.add(make_embedding(1))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    async def test_same_id_different_type_is_allowed(self, db_session):
        db_session.add_all([make_embedding(1, ContentType.FACT), make_embedding(1, ContentType.PROJECT)])
        await db_session.commit()

    async def test_session_key_is_unique(self, db_session):
        db_session.add(ConversationSession(session_key="sess-42"))
        await db_session.commit()

        db_session.add(ConversationSession(session_key="sess-42"))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    async def test_one_project_link_per_message(self, db_session, make_project):
        project = await make_project("KeeMU")
        session = ConversationSession(session_key="sess-1")
        db_session.add(session)
        await db_session.flush()
        message = ChatMessage(session_id=session.id, role=MessageRole.ASSISTANT, content="Hi")
        db_session.add(message)
        await db_session.flush()

        db_session.add(ChatProjectLink(message_id=message.id, project_id=project.id))
        await db_session.commit()

        db_session.add(ChatProjectLink(message_id=message.id, project_id=project.id))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()


@pytest.mark.asyncio
class TestColumns:
    """Column defaults and stored representations."""

    async def test_enums_store_values(self, db_session):
        db_session.add(make_embedding(5, ContentType.PROJECT))
        await db_session.commit()

        stored = (await db_session.execute(text("SELECT content_type FROM embeddings"))).scalar_one()
        assert stored == "project"

    async def test_fact_defaults(self, db_session):
        fact = Fact(title="Skills", content="Python")
        db_session.add(fact)
        await db_session.commit()

        assert fact.keywords == []
        assert fact.priority == 0
        assert fact.created_at is not None
        assert fact.updated_at is not None

    async def test_vector_round_trip_on_sqlite(self, db_session):
        record = make_embedding(9)
        db_session.add(record)
        await db_session.commit()
        db_session.expunge_all()

        stored = await db_session.get(Embedding, record.id)
        assert stored.embedding == pytest.approx([0.1, 0.2, 0.3])
        assert stored.content_key == ("fact", 9)

    async def test_project_relationships_are_ordered(self, db_session, make_project):
        project = await make_project(
            "KeeMU",
            tools=["Redis", "Celery", "FastAPI"],
            images=["https://cdn.example.com/1.png", "https://cdn.example.com/2.png"],
        )

        db_session.expunge_all()

        loaded = (await db_session.execute(select(Project).where(Project.id == project.id))).scalar_one()
        assert loaded.tool_names == ["Celery", "FastAPI", "Redis"]
        assert [image.order_index for image in loaded.images] == [0, 1]


@pytest.mark.asyncio
class TestSessionHelpers:
    """Engine configuration and session lifecycle."""

    async def test_sqlite_memory_uses_static_pool(self):
        config = get_engine_config("sqlite+aiosqlite:///:memory:")

        assert config["poolclass"] is StaticPool
        assert config["connect_args"] == {"check_same_thread": False}

    async def test_sqlite_file_uses_default_pool(self):
        assert "poolclass" not in get_engine_config("sqlite+aiosqlite:///./portfolio.db")

    async def test_health_check(self, test_engine):
        assert await check_db_health(test_engine) is True

    async def test_get_session_rolls_back_on_error(self, session_factory):
        sessions = get_session(session_factory)
        session = await sessions.__anext__()
        session.add(ConversationSession(session_key="rolled-back"))
        await session.flush()

        with pytest.raises(RuntimeError):
            await sessions.athrow(RuntimeError("route failed"))

        async with session_factory() as fresh:
            count = (await fresh.execute(text("SELECT COUNT(*) FROM conversation_sessions"))).scalar_one()
        assert count == 0
