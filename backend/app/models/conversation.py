"""
Conversation Models

Chat state for the portfolio assistant.

Models Included:
----------------
1. ConversationSession - A chat session identified by a caller-chosen key
2. ChatMessage - One message in a session (append-only)
3. ChatProjectLink - Optional project attached to an assistant message
4. ChatAnalytics - Query/response record of each completed turn
5. MessageRole (Enum) - Role of message sender

Database Tables:
----------------
- conversation_sessions
- chat_messages
- chat_project_links
- chat_analytics

Relationships:
--------------
- ConversationSession (1) ←→ (Many) ChatMessage
- ChatMessage (1) ←→ (0..1) ChatProjectLink
- Project (1) ←→ (Many) ChatProjectLink
"""

import enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum, Float, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import BaseModel, JSONType, String255, String1000
from app.models.embedding import enum_values

if TYPE_CHECKING:
    from app.models.content import Project


# ================================
# Enums
# ================================

class MessageRole(str, enum.Enum):
    """
    Role of a chat message.

    Follows the Anthropic messages format:
    [
        {"role": "user", "content": "What projects use Python?"},
        {"role": "assistant", "content": "..."}
    ]
    """

    USER = "user"
    ASSISTANT = "assistant"

    def __str__(self) -> str:
        return self.value


# ================================
# ConversationSession Model
# ================================

class ConversationSession(BaseModel):
    """
    A chat session.

    session_key is generated by the client (e.g. a UUID kept in browser
    storage) and maps to exactly one row; get_or_create_session() relies on
    the unique constraint to resolve concurrent first use.

    updated_at is bumped on every appended message, so ordering sessions by
    it lists the most recently active first.
    """

    __tablename__ = "conversation_sessions"

    session_key: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        unique=True,
        comment="Opaque caller-generated session identifier"
    )

    title: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        default="New Chat",
        comment="Display title, set from the first prompt"
    )

    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise"
    )
    # Never loaded implicitly; use ConversationService.list_messages()

    __table_args__ = (
        Index("ix_conversation_sessions_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"ConversationSession(id={self.id}, key='{self.session_key}')"


# ================================
# ChatMessage Model
# ================================

class ChatMessage(BaseModel):
    """
    A single chat message. Messages are never edited after insert.

    Ordering within a session is (created_at, id) ascending.
    """

    __tablename__ = "chat_messages"

    session_id: Mapped[int] = mapped_column(
        ForeignKey("conversation_sessions.id", ondelete="CASCADE"),
        nullable=False,
        comment="Foreign key to conversation_sessions table"
    )

    role: Mapped[MessageRole] = mapped_column(
        Enum(
            MessageRole,
            name="message_role",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        comment="user or assistant"
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Message text"
    )

    # ================================
    # Relationships
    # ================================

    session: Mapped[ConversationSession] = relationship(
        ConversationSession,
        back_populates="messages",
        lazy="raise"
    )

    project_link: Mapped[Optional["ChatProjectLink"]] = relationship(
        "ChatProjectLink",
        back_populates="message",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin"
    )

    __table_args__ = (
        Index("ix_chat_messages_session_created", "session_id", "created_at"),
    )

    def __repr__(self) -> str:
        preview = self.content[:40] + "..." if len(self.content) > 40 else self.content
        return f"ChatMessage(id={self.id}, role={self.role}, content='{preview}')"

    @property
    def project_image(self) -> Optional[str]:
        return self.project_link.project_image if self.project_link else None


# ================================
# ChatProjectLink Model
# ================================

class ChatProjectLink(BaseModel):
    """
    Project attached to an assistant reply.

    project_image is copied from the project at link time and never
    re-resolved, so history keeps showing the image the user originally saw
    even if the project's images change later.
    """

    __tablename__ = "chat_project_links"

    message_id: Mapped[int] = mapped_column(
        ForeignKey("chat_messages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Foreign key to chat_messages table (one link per message)"
    )

    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Foreign key to projects table"
    )

    project_image: Mapped[Optional[str]] = mapped_column(
        String1000,
        nullable=True,
        comment="Image URL frozen at link time"
    )

    relevance: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.7,
        comment="Relevance score of the project for the reply (0-1)"
    )

    message: Mapped[ChatMessage] = relationship(
        ChatMessage,
        back_populates="project_link",
        lazy="raise"
    )

    project: Mapped["Project"] = relationship(
        "Project",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return (
            f"ChatProjectLink(message_id={self.message_id}, "
            f"project_id={self.project_id}, relevance={self.relevance})"
        )


# ================================
# ChatAnalytics Model
# ================================

class ChatAnalytics(BaseModel):
    """
    One answered query, kept for usage analysis.

    Written after the assistant message is saved. A failed write is logged
    and never fails the turn.
    """

    __tablename__ = "chat_analytics"

    session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("conversation_sessions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Foreign key to conversation_sessions table"
    )

    query: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="User prompt"
    )

    response: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Assistant reply"
    )

    response_time: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Seconds from prompt to saved reply"
    )

    search_results: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="[{content_type, content_id, title, similarity}] used as context"
    )

    def __repr__(self) -> str:
        return f"ChatAnalytics(id={self.id}, session_id={self.session_id})"
