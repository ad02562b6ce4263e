"""
Conversation Service for Portfolio Chat

This module manages chat sessions and their message history:
- Deterministic session identity (one row per client session key)
- Append-only message persistence
- Recent-history retrieval for the LLM prompt and the history endpoint
- Session titles and listing
- Analytics records of answered queries

Every write commits its own unit of work. Store errors surface as
PersistenceFailure; nothing is silently dropped.
"""

import logging
from typing import Optional, Union

from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import PersistenceFailure
from app.db.base import utc_now
from app.models.conversation import ChatAnalytics, ChatMessage, ConversationSession, MessageRole

logger = logging.getLogger(__name__)


# Concurrent first use of a key can lose the insert race; re-read this many times
MAX_SESSION_CREATE_ATTEMPTS = 3


def session_title_from_prompt(prompt: str, max_chars: Optional[int] = None) -> str:
    """
    Session title derived from the first prompt.

    Example:
        "What projects have you built with Python?" → "What projects have you built w..."
    """
    limit = settings.CHAT_TITLE_MAX_CHARS if max_chars is None else max_chars
    text = " ".join(prompt.split())
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class ConversationService:
    """
    Service for managing chat sessions and messages.

    Usage:
    ------
    service = ConversationService(db)

    session_id = await service.get_or_create_session("sess-42")

    await service.append_message(session_id, MessageRole.USER, "hello")
    await service.append_message(session_id, MessageRole.ASSISTANT, "Hi!")

    history = await service.list_messages(session_id, limit=10)
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the conversation service.

        Args:
            db: Database session
        """
        self.db = db

    # ================================
    # Sessions
    # ================================

    async def get_or_create_session(self, session_key: str) -> int:
        """
        Return the session id for a key, creating the session on first use.

        Two callers racing on a new key both end up with the same id: the
        loser's insert hits the unique constraint, rolls back and re-reads
        the winner's row.

        Args:
            session_key: Opaque client-generated key

        Returns:
            Session id

        Raises:
            ValueError: If session_key is blank
            PersistenceFailure: On store errors
        """
        if not session_key or not session_key.strip():
            raise ValueError("session_key must not be empty")

        for attempt in range(1, MAX_SESSION_CREATE_ATTEMPTS + 1):
            try:
                existing = await self._select_session_id(session_key)
                if existing is not None:
                    return existing

                session = ConversationSession(
                    session_key=session_key,
                    title=settings.CHAT_DEFAULT_SESSION_TITLE,
                )
                self.db.add(session)
                await self.db.commit()

                logger.info(f"Created conversation session {session.id}")
                return session.id

            except IntegrityError:
                await self.db.rollback()
                logger.info(
                    f"Session key already created concurrently, re-reading "
                    f"(attempt {attempt}/{MAX_SESSION_CREATE_ATTEMPTS})"
                )
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Failed to get or create session: {e}")
                raise PersistenceFailure(f"Could not get or create session: {e}") from e

        raise PersistenceFailure(
            f"Could not get or create session after {MAX_SESSION_CREATE_ATTEMPTS} attempts"
        )

    async def find_session_id(self, session_key: str) -> Optional[int]:
        """Look up a session id without creating one."""
        if not session_key or not session_key.strip():
            return None
        try:
            return await self._select_session_id(session_key)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not look up session: {e}") from e

    async def _select_session_id(self, session_key: str) -> Optional[int]:
        result = await self.db.execute(
            select(ConversationSession.id).where(
                ConversationSession.session_key == session_key
            )
        )
        return result.scalar_one_or_none()

    async def rename_session(self, session_id: int, title: str) -> bool:
        """
        Update a session title.

        Returns:
            True if updated, False if the session does not exist
        """
        try:
            session = await self.db.get(ConversationSession, session_id)
            if session is None:
                return False

            session.title = title[:255]
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceFailure(f"Could not rename session {session_id}: {e}") from e

        logger.info(f"Renamed session {session_id} to '{session.title}'")
        return True

    async def list_sessions(self, limit: int = 20) -> list[ConversationSession]:
        """Most recently active sessions first."""
        if limit <= 0:
            return []
        try:
            result = await self.db.execute(
                select(ConversationSession)
                .order_by(desc(ConversationSession.updated_at), desc(ConversationSession.id))
                .limit(limit)
            )
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not list sessions: {e}") from e
        return list(result.scalars().all())

    # ================================
    # Messages
    # ================================

    async def append_message(
        self,
        session_id: int,
        role: Union[MessageRole, str],
        content: str,
    ) -> int:
        """
        Persist one message and bump the session's updated_at.

        Args:
            session_id: Existing session id
            role: "user" or "assistant"
            content: Message text

        Returns:
            Message id

        Raises:
            ValueError: For an unknown role
            PersistenceFailure: Unknown session or store error
        """
        message_role = MessageRole(role)

        try:
            session = await self.db.get(ConversationSession, session_id)
            if session is None:
                raise PersistenceFailure(f"Session {session_id} does not exist")

            message = ChatMessage(
                session_id=session_id,
                role=message_role,
                content=content,
            )
            self.db.add(message)
            session.updated_at = utc_now()

            await self.db.commit()

        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to append {message_role} message to session {session_id}: {e}")
            raise PersistenceFailure(f"Could not save message: {e}") from e

        logger.debug(f"Added {message_role} message {message.id} to session {session_id}")
        return message.id

    async def list_messages(self, session_id: int, limit: int) -> list[ChatMessage]:
        """
        The most recent `limit` messages, oldest first.

        Each message exposes its project link (message.project_link) if any.

        Args:
            session_id: Session id
            limit: Maximum messages; <= 0 returns []

        Returns:
            Messages in ascending (created_at, id) order
        """
        if limit <= 0:
            return []

        query = (
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(desc(ChatMessage.created_at), desc(ChatMessage.id))
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not load messages: {e}") from e

        messages = list(result.scalars().all())
        messages.reverse()
        return messages

    # ================================
    # Analytics
    # ================================

    async def record_interaction(
        self,
        session_id: Optional[int],
        query: str,
        response: str,
        search_results: Optional[list[dict]] = None,
        response_time: Optional[float] = None,
    ) -> int:
        """
        Store one answered query in chat_analytics.

        Raises:
            PersistenceFailure: Store error (callers treat the write as advisory)
        """
        record = ChatAnalytics(
            session_id=session_id,
            query=query,
            response=response,
            search_results=search_results or [],
            response_time=response_time,
        )

        try:
            self.db.add(record)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceFailure(f"Could not record chat interaction: {e}") from e

        return record.id


def create_conversation_service(db: AsyncSession) -> ConversationService:
    """
    Create a conversation service instance.

    Args:
        db: Database session

    Returns:
        ConversationService instance
    """
    return ConversationService(db)
