"""
Chat Service

Orchestrates one chat turn of the portfolio assistant:

1. Resolve the session for the client's key (create on first use)
2. Load recent history
3. Analyze the prompt's intent (project vs. general question)
4. Persist the user message
5. Search with intent-tuned settings, bounded by CHAT_SEARCH_TIMEOUT_SECONDS
   (a failed or timed-out search continues with empty context)
6. Format the context
7. Generate the reply, bounded by CHAT_RESPONSE_TIMEOUT_SECONDS
8. Persist the assistant message
9. Pick the most relevant project and link it to the reply (best effort)
10. Title the session from the first prompt
11. Record the answered query in chat_analytics (best effort)

chat() runs every step and returns the finished turn. chat_stream() runs
steps 1-6 up front and returns a ChatStream: its chunks() yields the reply
as it is generated, then performs steps 8-11.

Persistence and generation failures propagate; linking, titling and
analytics failures are logged and the turn still succeeds.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import GenerationFailure, LinkingFailure, PersistenceFailure
from app.models.content import Project
from app.models.conversation import ChatMessage, MessageRole
from app.models.embedding import ContentType
from app.services.processors.embedder import TextEmbedder
from app.services.rag.conversation_service import ConversationService, session_title_from_prompt
from app.services.rag.generator import GenerationRequest, ResponseGenerator
from app.services.rag.intent import QueryIntent, analyze_query_intent
from app.services.rag.project_linker import ProjectLinker, is_valid_image_url
from app.services.rag.search import HybridSearchEngine
from app.services.rag.types import ProjectPayload, SearchOutcome, SearchResult

logger = logging.getLogger(__name__)


# A project result above this is "high confidence" even without a named project
HIGH_CONFIDENCE_PROJECT_SIMILARITY = 0.8


@dataclass
class ChatTurn:
    """Outcome of one chat turn."""

    session_id: int
    response: str
    user_message_id: int
    assistant_message_id: int
    intent: QueryIntent
    search: SearchOutcome
    relevant_project: Optional[SearchResult] = None
    project_image: Optional[str] = None

    def relevant_project_dict(self) -> Optional[dict[str, Any]]:
        return relevant_project_dict(self.relevant_project)


@dataclass
class PreparedTurn:
    """A turn with its user message saved and its context retrieved."""

    session_id: int
    message: str
    user_message_id: int
    intent: QueryIntent
    search: SearchOutcome
    request: GenerationRequest
    relevant_project: Optional[SearchResult]
    project_image: Optional[str]
    first_turn: bool
    started_at: float

    def relevant_project_dict(self) -> Optional[dict[str, Any]]:
        return relevant_project_dict(self.relevant_project)


def relevant_project_dict(result: Optional[SearchResult]) -> Optional[dict[str, Any]]:
    if result is None:
        return None
    payload: ProjectPayload = result.payload
    return {
        "id": result.content_id,
        "title": payload.title,
        "slug": payload.slug,
        "summary": payload.summary,
        "url": payload.url,
        "similarity": round(result.similarity, 4),
    }


def select_relevant_project(
    results: Sequence[SearchResult],
    intent: QueryIntent,
    confidence: Optional[float] = None,
) -> Optional[SearchResult]:
    """
    The project result to attach to the reply, if any.

    Only considered for project questions, or when some project result is
    above `confidence` (default CHAT_PROJECT_CONFIDENCE). Preference:
    the project named in the prompt, then any project above 0.8, then the
    best-ranked project.
    """
    threshold = settings.CHAT_PROJECT_CONFIDENCE if confidence is None else confidence
    projects = [r for r in results if r.content_type == ContentType.PROJECT]

    if not projects:
        return None
    if not intent.is_project_query and not any(r.similarity > threshold for r in projects):
        return None

    if intent.project_name:
        wanted = intent.project_name.lower()
        for result in projects:
            if result.payload.title.lower() == wanted:
                return result

    for result in projects:
        if result.similarity > HIGH_CONFIDENCE_PROJECT_SIMILARITY:
            return result

    return projects[0]


def history_for_llm(messages: Sequence[ChatMessage]) -> list[dict[str, str]]:
    return [{"role": str(message.role), "content": message.content} for message in messages]


def search_summary(results: Sequence[SearchResult]) -> list[dict[str, Any]]:
    """Compact record of the results a reply was grounded on."""
    return [
        {
            "content_type": result.content_type.value,
            "content_id": result.content_id,
            "title": result.title,
            "similarity": round(result.similarity, 4),
        }
        for result in results
    ]


async def list_project_titles(db: AsyncSession) -> list[str]:
    """Project titles, featured projects first, then alphabetical."""
    try:
        result = await db.execute(
            select(Project.title).order_by(Project.featured.desc(), Project.title.asc())
        )
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Could not load project titles: {e}") from e
    return list(result.scalars().all())


class ChatStream:
    """
    A prepared turn whose reply is still to be generated.

    Usage:
    ------
    stream = await service.chat_stream("sess-42", "Tell me about KeeMU")
    stream.session_id, stream.relevant_project_dict()
    async for text in stream.chunks():
        ...
    stream.turn  # set once chunks() is exhausted
    """

    def __init__(self, service: "ChatService", prepared: PreparedTurn):
        self.service = service
        self.prepared = prepared
        self.turn: Optional[ChatTurn] = None

    @property
    def session_id(self) -> int:
        return self.prepared.session_id

    @property
    def project_image(self) -> Optional[str]:
        return self.prepared.project_image

    @property
    def search(self) -> SearchOutcome:
        return self.prepared.search

    def relevant_project_dict(self) -> Optional[dict[str, Any]]:
        return self.prepared.relevant_project_dict()

    async def chunks(self) -> AsyncIterator[str]:
        """
        Yield reply text chunks, then save the reply.

        Raises:
            GenerationFailure: The LLM failed or the reply timed out
            PersistenceFailure: The assistant message could not be stored
        """
        parts: list[str] = []
        async for text in self.service._generate_stream(self.prepared.request):
            parts.append(text)
            yield text

        self.turn = await self.service._complete(self.prepared, "".join(parts).strip())


class ChatService:
    """
    Chat turn orchestration.

    Usage:
    ------
    service = ChatService(db, embedder, generator)
    turn = await service.chat("sess-42", "What have you built with Python?")
    turn.response, turn.relevant_project, turn.project_image
    """

    def __init__(
        self,
        db: AsyncSession,
        embedder: TextEmbedder,
        generator: ResponseGenerator,
        search_engine: Optional[HybridSearchEngine] = None,
        conversations: Optional[ConversationService] = None,
        linker: Optional[ProjectLinker] = None,
    ):
        self.db = db
        self.generator = generator
        self.search_engine = search_engine or HybridSearchEngine(db, embedder)
        self.conversations = conversations or ConversationService(db)
        self.linker = linker or ProjectLinker(db)

    async def chat(
        self,
        session_key: str,
        message: str,
        include_history: bool = True,
    ) -> ChatTurn:
        """
        Run one chat turn.

        Args:
            session_key: Client session key
            message: User prompt (non-blank)
            include_history: Send recent history to the LLM

        Returns:
            ChatTurn

        Raises:
            ValueError: Blank message or session key
            PersistenceFailure: Session or message could not be stored
            GenerationFailure: The LLM failed or timed out
        """
        prepared = await self._prepare(session_key, message, include_history)
        response = await self._generate(prepared.request)
        return await self._complete(prepared, response)

    async def chat_stream(
        self,
        session_key: str,
        message: str,
        include_history: bool = True,
    ) -> ChatStream:
        """
        Start a streamed chat turn.

        The user message is saved and the context retrieved before this
        returns, so validation and persistence errors surface here rather
        than mid-stream.

        Raises:
            ValueError: Blank message or session key
            PersistenceFailure: Session or user message could not be stored
        """
        prepared = await self._prepare(session_key, message, include_history)
        return ChatStream(self, prepared)

    async def get_history(self, session_key: str, limit: int) -> list[ChatMessage]:
        """Recent messages of a session by key; [] for an unknown key."""
        session_id = await self.conversations.find_session_id(session_key)
        if session_id is None:
            return []
        return await self.conversations.list_messages(session_id, limit)

    # ================================
    # Steps
    # ================================

    async def _prepare(self, session_key: str, message: str, include_history: bool) -> PreparedTurn:
        if not message or not message.strip():
            raise ValueError("Message must not be empty")

        started_at = time.monotonic()

        session_id = await self.conversations.get_or_create_session(session_key)

        previous = await self.conversations.list_messages(session_id, settings.CHAT_HISTORY_LIMIT)

        intent = analyze_query_intent(
            message,
            project_titles=await list_project_titles(self.db),
            aliases=settings.project_alias_map,
            owner_name=settings.PORTFOLIO_OWNER_NAME or None,
        )
        logger.info(
            f"Query intent: project={intent.is_project_query}, "
            f"name={intent.project_name!r}, confidence={intent.confidence}, pattern={intent.pattern}"
        )

        user_message_id = await self.conversations.append_message(
            session_id, MessageRole.USER, message
        )

        outcome = await self._search(message, intent)

        relevant = select_relevant_project(outcome.results, intent)
        project_image = None
        if relevant is not None:
            project_image = await self._first_image(relevant.content_id)

        request = GenerationRequest(
            prompt=message,
            context=outcome.context,
            intent=intent,
            history=history_for_llm(previous) if include_history else [],
            project=relevant.payload if relevant is not None else None,
            project_image=project_image,
        )

        return PreparedTurn(
            session_id=session_id,
            message=message,
            user_message_id=user_message_id,
            intent=intent,
            search=outcome,
            request=request,
            relevant_project=relevant,
            project_image=project_image,
            first_turn=not previous,
            started_at=started_at,
        )

    async def _complete(self, prepared: PreparedTurn, response: str) -> ChatTurn:
        session_id = prepared.session_id

        assistant_message_id = await self.conversations.append_message(
            session_id, MessageRole.ASSISTANT, response
        )

        project_image = prepared.project_image
        if prepared.relevant_project is not None:
            project_image = await self._link_project(
                assistant_message_id, prepared.relevant_project, project_image
            )

        if prepared.first_turn:
            await self._title_session(session_id, prepared.message)

        await self._record_interaction(prepared, response)

        return ChatTurn(
            session_id=session_id,
            response=response,
            user_message_id=prepared.user_message_id,
            assistant_message_id=assistant_message_id,
            intent=prepared.intent,
            search=prepared.search,
            relevant_project=prepared.relevant_project,
            project_image=project_image,
        )

    async def _search(self, message: str, intent: QueryIntent) -> SearchOutcome:
        if intent.is_project_query and intent.project_name:
            query = intent.project_name
            threshold = settings.CHAT_PROJECT_MATCH_THRESHOLD
        else:
            query = message
            threshold = settings.CHAT_GENERAL_MATCH_THRESHOLD

        outcome = await self.search_engine.retrieve_context(
            query,
            match_threshold=threshold,
            match_count=settings.CHAT_MATCH_COUNT,
            timeout=settings.CHAT_SEARCH_TIMEOUT_SECONDS,
        )
        logger.info(f"Found {len(outcome.results)} relevant documents for chat")
        return outcome

    async def _generate(self, request: GenerationRequest) -> str:
        timeout = settings.CHAT_RESPONSE_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(self.generator.generate(request), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Response generation timed out after {timeout}s")
            raise GenerationFailure(f"Response generation timed out after {timeout}s") from e
        except Exception as e:
            logger.error(f"Response generation failed: {e}")
            raise GenerationFailure(f"Response generation failed: {e}") from e

    async def _generate_stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        # CHAT_RESPONSE_TIMEOUT_SECONDS bounds the whole reply, not each chunk
        timeout = settings.CHAT_RESPONSE_TIMEOUT_SECONDS
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        chunks = self.generator.generate_stream(request)
        try:
            while True:
                try:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    text = await asyncio.wait_for(chunks.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as e:
                    logger.error(f"Response streaming timed out after {timeout}s")
                    raise GenerationFailure(f"Response generation timed out after {timeout}s") from e
                except Exception as e:
                    logger.error(f"Response streaming failed: {e}")
                    raise GenerationFailure(f"Response generation failed: {e}") from e
                yield text
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _first_image(self, project_id: int) -> Optional[str]:
        try:
            url = await self.linker.get_project_first_image(project_id)
        except SQLAlchemyError as e:
            logger.warning(f"Could not load first image of project {project_id}: {e}")
            await self.db.rollback()
            return None
        return url if is_valid_image_url(url) else None

    async def _link_project(
        self,
        message_id: int,
        project: SearchResult,
        image_url: Optional[str],
    ) -> Optional[str]:
        try:
            link = await self.linker.link_project_to_message(
                message_id,
                project.content_id,
                image_url=image_url,
            )
        except LinkingFailure as e:
            logger.warning(f"Project link skipped: {e}")
            return None
        return link.project_image

    async def _title_session(self, session_id: int, message: str) -> None:
        try:
            await self.conversations.rename_session(session_id, session_title_from_prompt(message))
        except PersistenceFailure as e:
            logger.warning(f"Could not title session {session_id}: {e}")

    async def _record_interaction(self, prepared: PreparedTurn, response: str) -> None:
        try:
            await self.conversations.record_interaction(
                prepared.session_id,
                prepared.message,
                response,
                search_results=search_summary(prepared.search.results),
                response_time=round(time.monotonic() - prepared.started_at, 3),
            )
        except PersistenceFailure as e:
            logger.warning(f"Could not record chat analytics for session {prepared.session_id}: {e}")


def create_chat_service(
    db: AsyncSession,
    embedder: TextEmbedder,
    generator: ResponseGenerator,
) -> ChatService:
    """Create a chat service instance."""
    return ChatService(db, embedder, generator)
