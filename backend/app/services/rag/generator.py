"""
Response Generator for Portfolio Chat

This module turns a prompt, its retrieved context and the recent history
into an assistant reply using the Claude API.

- ResponseGenerator: the protocol chat orchestration depends on
- PortfolioResponseGenerator: Anthropic-backed implementation with the
  portfolio assistant persona, as one reply or as a stream of text chunks

Prompt tuning by intent:
------------------------
- Project questions: temperature 0.7, up to 1000 tokens, focus on the
  selected project, the UI shows the project image itself
- General questions: temperature 0.4, up to 700 tokens, concise answers
  about skills and background
"""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol

from anthropic import AsyncAnthropic

from app.core.config import settings
from app.services.rag.intent import QueryIntent
from app.services.rag.types import ProjectPayload

logger = logging.getLogger(__name__)


PROJECT_TEMPERATURE = 0.7
PROJECT_MAX_TOKENS = 1000
GENERAL_TEMPERATURE = 0.4
GENERAL_MAX_TOKENS = 700

NO_CONTEXT_TEXT = "No specific information found in knowledge base."


@dataclass
class GenerationRequest:
    """Everything the generator needs for one reply."""

    prompt: str
    context: str
    intent: QueryIntent
    history: list[dict[str, str]] = field(default_factory=list)
    project: Optional[ProjectPayload] = None
    project_image: Optional[str] = None


class ResponseGenerator(Protocol):
    async def generate(self, request: GenerationRequest) -> str:
        ...

    def generate_stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        ...


class PortfolioResponseGenerator:
    """
    Portfolio assistant replies using Claude.

    Usage:
    ------
    generator = PortfolioResponseGenerator(api_key=settings.ANTHROPIC_API_KEY)

    reply = await generator.generate(GenerationRequest(
        prompt="Tell me about the Portfolio Website project",
        context=context,
        intent=intent,
        history=[{"role": "user", "content": "hi"}, ...],
    ))
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        owner_name: Optional[str] = None,
        client: Optional[AsyncAnthropic] = None,
    ):
        """
        Initialize the generator.

        Args:
            api_key: Anthropic API key (defaults to settings.ANTHROPIC_API_KEY)
            model: Claude model (defaults to settings.ANTHROPIC_MODEL)
            owner_name: Portfolio owner's name (defaults to settings)
            client: Preconfigured client (tests)
        """
        self.api_key = api_key or settings.ANTHROPIC_API_KEY
        self.model = model or settings.ANTHROPIC_MODEL
        self.owner_name = owner_name or settings.PORTFOLIO_OWNER_NAME or "the portfolio owner"

        if client is None and not self.api_key:
            raise ValueError("Anthropic API key is required. Set ANTHROPIC_API_KEY in environment.")

        self.client = client or AsyncAnthropic(api_key=self.api_key)

        logger.info(f"PortfolioResponseGenerator initialized with model={self.model}")

    async def generate(self, request: GenerationRequest) -> str:
        """
        Generate the assistant reply.

        Raises:
            Exception: Anthropic client errors propagate unchanged
        """
        logger.info(
            f"Generating response for {_query_kind(request)} query: "
            f"'{request.prompt[:50]}' with {len(request.history)} history messages"
        )

        response = await self.client.messages.create(**self._message_params(request))

        answer = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        ).strip()

        logger.info(
            f"Generated response: {len(answer)} chars, "
            f"{response.usage.input_tokens + response.usage.output_tokens} tokens"
        )

        return answer

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """
        Stream the assistant reply as text chunks.

        Same prompt and sampling as generate().

        Yields:
            Text chunks as Claude produces them

        Raises:
            Exception: Anthropic client errors propagate unchanged
        """
        logger.info(f"Streaming response for {_query_kind(request)} query: '{request.prompt[:50]}'")

        try:
            async with self.client.messages.stream(**self._message_params(request)) as stream:
                async for text in stream.text_stream:
                    yield text
        except Exception as e:
            logger.error(f"Error streaming response: {e}")
            raise

    def _message_params(self, request: GenerationRequest) -> dict[str, Any]:
        is_project = request.intent.is_project_query
        return {
            "model": self.model,
            "max_tokens": PROJECT_MAX_TOKENS if is_project else GENERAL_MAX_TOKENS,
            "temperature": PROJECT_TEMPERATURE if is_project else GENERAL_TEMPERATURE,
            "system": self.build_system_prompt(request),
            "messages": build_messages(request.history, request.prompt),
        }

    def build_system_prompt(self, request: GenerationRequest) -> str:
        owner = self.owner_name
        prompt = (
            f"You are an AI assistant for {owner}'s portfolio website. "
            f"Answer questions about {owner}'s projects, skills and background.\n"
            "\n"
            "IMPORTANT RULES:\n"
            "1. Only provide information about real, documented projects from the context provided.\n"
            "2. DO NOT invent or speculate about any projects, outcomes, or roles.\n"
            "3. If no relevant project matches the prompt, say that no related project is available.\n"
            "4. Maintain a professional tone, focusing on accurate and verified information.\n"
            "5. Format responses in semantic HTML using <h2>, <p>, <strong>, and <a> tags where appropriate.\n"
            "6. DO NOT wrap the response in markdown code blocks."
        )

        if request.intent.is_project_query:
            if request.project is not None:
                prompt += (
                    "\n\nABOUT THE CURRENT PROJECT:\n"
                    f"7. The user is asking about the \"{request.project.title}\" project.\n"
                    "8. Focus your response on accurate details about this specific project."
                )
                if request.project_image:
                    prompt += (
                        "\n9. DO NOT include any image tags in your response - "
                        "the UI displays the project image."
                    )
        else:
            prompt += (
                "\n\nGENERAL INFORMATION:\n"
                f"7. The user is asking about {owner}'s skills, experience, or background.\n"
                f"8. Focus on accurate information about {owner}'s professional expertise.\n"
                "9. Keep your response concise and informative."
            )

        prompt += f"\n\nContext:\n{request.context or NO_CONTEXT_TEXT}"

        if request.project is not None:
            prompt += f"\n\nRelevant Project:\n{format_project_details(request.project)}"

        return prompt


def _query_kind(request: GenerationRequest) -> str:
    return "project" if request.intent.is_project_query else "general"


def format_project_details(project: ProjectPayload) -> str:
    lines = [f"Title: {project.title}", f"Slug: {project.slug}"]
    if project.summary:
        lines.append(f"Summary: {project.summary}")
    if project.tools:
        lines.append(f"Tools: {', '.join(project.tools)}")
    if project.url:
        lines.append(f"URL: {project.url}")
    return "\n".join(lines)


def build_messages(history: list[dict[str, str]], prompt: str) -> list[dict[str, Any]]:
    """
    Anthropic message list: history followed by the prompt.

    The API requires alternating roles starting with "user", so leading
    assistant messages are dropped and consecutive same-role messages are
    merged.
    """
    messages: list[dict[str, Any]] = []
    for item in [*history, {"role": "user", "content": prompt}]:
        role = str(item["role"])
        content = item["content"]
        if not content:
            continue
        if not messages and role != "user":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += f"\n\n{content}"
        else:
            messages.append({"role": role, "content": content})
    return messages


def create_response_generator(
    api_key: Optional[str] = None,
    model: Optional[str] = None,
) -> PortfolioResponseGenerator:
    """
    Create a response generator instance.

    Example:
        generator = create_response_generator()
        reply = await generator.generate(request)
    """
    return PortfolioResponseGenerator(api_key=api_key, model=model)
