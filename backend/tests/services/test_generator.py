"""
Tests for the Response Generator

This module tests:
- PortfolioResponseGenerator (Claude integration, client mocked)
- System prompt variants per intent
- Anthropic message list construction
- Streamed replies (client.messages.stream mocked)
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services.rag.generator import (
    GENERAL_MAX_TOKENS,
    GENERAL_TEMPERATURE,
    NO_CONTEXT_TEXT,
    PROJECT_MAX_TOKENS,
    PROJECT_TEMPERATURE,
    GenerationRequest,
    PortfolioResponseGenerator,
    build_messages,
    format_project_details,
)
from app.services.rag.intent import QueryIntent
from app.services.rag.types import ProjectPayload


GENERAL = QueryIntent(is_project_query=False, confidence=0.9, pattern="general_info")
PROJECT = QueryIntent(is_project_query=True, project_name="KeeMU", confidence=1.0, pattern="direct_match")

KEEMU = ProjectPayload(
    title="KeeMU",
    slug="keemu",
    summary="Content digest assistant",
    tools=("FastAPI", "Celery"),
    url="https://example.com/keemu",
)


def anthropic_client(text="<p>Hello!</p>"):
    """Mock AsyncAnthropic returning one text block."""
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=120, output_tokens=40),
    ))
    return client


# ========================================
# Test PortfolioResponseGenerator
# ========================================

def test_generator_initialization():
    """Test generator initialization."""
    generator = PortfolioResponseGenerator(api_key="test-api-key", model="claude-test", owner_name="Ada")

    assert generator.api_key == "test-api-key"
    assert generator.model == "claude-test"
    assert generator.owner_name == "Ada"


def test_generator_requires_api_key():
    """Test that generator requires API key."""
    with patch("app.services.rag.generator.settings.ANTHROPIC_API_KEY", None):
        with pytest.raises(ValueError, match="API key is required"):
            PortfolioResponseGenerator()


@pytest.mark.asyncio
async def test_general_question_parameters():
    client = anthropic_client("  <p>I work mostly in Python.</p>\n")
    generator = PortfolioResponseGenerator(client=client, model="claude-test")

    reply = await generator.generate(GenerationRequest(
        prompt="What languages do you use?",
        context="GENERAL INFORMATION:\n[Skills - Match: 87.0%]\nPython\n\n",
        intent=GENERAL,
    ))

    assert reply == "<p>I work mostly in Python.</p>"
    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["model"] == "claude-test"
    assert kwargs["temperature"] == GENERAL_TEMPERATURE
    assert kwargs["max_tokens"] == GENERAL_MAX_TOKENS
    assert kwargs["messages"] == [{"role": "user", "content": "What languages do you use?"}]
    assert "[Skills - Match: 87.0%]" in kwargs["system"]


@pytest.mark.asyncio
async def test_project_question_parameters():
    client = anthropic_client()
    generator = PortfolioResponseGenerator(client=client)

    await generator.generate(GenerationRequest(
        prompt="Tell me about KeeMU",
        context="",
        intent=PROJECT,
        project=KEEMU,
    ))

    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["temperature"] == PROJECT_TEMPERATURE
    assert kwargs["max_tokens"] == PROJECT_MAX_TOKENS


@pytest.mark.asyncio
async def test_history_is_sent_before_prompt():
    client = anthropic_client()
    generator = PortfolioResponseGenerator(client=client)
    history = [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "Hi! Ask me anything."},
    ]

    await generator.generate(GenerationRequest(
        prompt="What have you built?",
        context="",
        intent=GENERAL,
        history=history,
    ))

    assert client.messages.create.await_args.kwargs["messages"] == [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "Hi! Ask me anything."},
        {"role": "user", "content": "What have you built?"},
    ]


@pytest.mark.asyncio
async def test_client_errors_propagate():
    client = anthropic_client()
    client.messages.create.side_effect = RuntimeError("overloaded")
    generator = PortfolioResponseGenerator(client=client)

    with pytest.raises(RuntimeError, match="overloaded"):
        await generator.generate(GenerationRequest(prompt="hi", context="", intent=GENERAL))


# ========================================
# Test System Prompt
# ========================================

def test_system_prompt_for_general_question():
    generator = PortfolioResponseGenerator(client=anthropic_client(), owner_name="Ada Lovelace")

    prompt = generator.build_system_prompt(GenerationRequest(prompt="hi", context="", intent=GENERAL))

    assert "Ada Lovelace's portfolio website" in prompt
    assert "GENERAL INFORMATION:" in prompt
    assert prompt.endswith(f"Context:\n{NO_CONTEXT_TEXT}")


def test_system_prompt_for_project_question():
    generator = PortfolioResponseGenerator(client=anthropic_client())

    prompt = generator.build_system_prompt(GenerationRequest(
        prompt="Tell me about KeeMU",
        context="PROJECTS:\n[KeeMU - Match: 91.0%]\n",
        intent=PROJECT,
        project=KEEMU,
        project_image="https://example.com/keemu.png",
    ))

    assert 'asking about the "KeeMU" project' in prompt
    assert "DO NOT include any image tags" in prompt
    assert "[KeeMU - Match: 91.0%]" in prompt
    assert "Relevant Project:\nTitle: KeeMU" in prompt


def test_system_prompt_without_image_omits_image_rule():
    generator = PortfolioResponseGenerator(client=anthropic_client())

    prompt = generator.build_system_prompt(GenerationRequest(
        prompt="Tell me about KeeMU", context="", intent=PROJECT, project=KEEMU,
    ))

    assert "image tags" not in prompt


def test_format_project_details():
    assert format_project_details(KEEMU) == (
        "Title: KeeMU\n"
        "Slug: keemu\n"
        "Summary: Content digest assistant\n"
        "Tools: FastAPI, Celery\n"
        "URL: https://example.com/keemu"
    )


# ========================================
# Test Message Construction
# ========================================

def test_build_messages_without_history():
    assert build_messages([], "hello") == [{"role": "user", "content": "hello"}]


def test_build_messages_drops_leading_assistant():
    history = [{"role": "assistant", "content": "Welcome!"}]

    assert build_messages(history, "hello") == [{"role": "user", "content": "hello"}]


def test_build_messages_merges_consecutive_roles():
    # An unanswered user message followed by the new prompt
    history = [{"role": "user", "content": "first"}]

    assert build_messages(history, "second") == [{"role": "user", "content": "first\n\nsecond"}]


# ========================================
# Test Streaming
# ========================================

class FakeMessageStream:
    """Stand-in for the SDK's message stream context manager."""

    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def text_stream(self):
        return self._texts()

    async def _texts(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


@pytest.mark.asyncio
async def test_stream_yields_text_chunks():
    client = MagicMock()
    client.messages.stream = MagicMock(return_value=FakeMessageStream(["<p>I build ", "with Python.</p>"]))
    generator = PortfolioResponseGenerator(client=client, model="claude-test")

    chunks = [text async for text in generator.generate_stream(GenerationRequest(
        prompt="Tell me about KeeMU",
        context="",
        intent=PROJECT,
        project=KEEMU,
    ))]

    assert chunks == ["<p>I build ", "with Python.</p>"]
    kwargs = client.messages.stream.call_args.kwargs
    assert kwargs["model"] == "claude-test"
    assert kwargs["temperature"] == PROJECT_TEMPERATURE
    assert kwargs["max_tokens"] == PROJECT_MAX_TOKENS
    assert kwargs["messages"] == [{"role": "user", "content": "Tell me about KeeMU"}]
    assert 'asking about the "KeeMU" project' in kwargs["system"]


@pytest.mark.asyncio
async def test_stream_errors_propagate():
    client = MagicMock()
    client.messages.stream = MagicMock(
        return_value=FakeMessageStream(["<p>Partial"], error=RuntimeError("connection reset"))
    )
    generator = PortfolioResponseGenerator(client=client)
    request = GenerationRequest(prompt="hello", context="", intent=GENERAL)

    received = []
    with pytest.raises(RuntimeError, match="connection reset"):
        async for text in generator.generate_stream(request):
            received.append(text)

    assert received == ["<p>Partial"]
