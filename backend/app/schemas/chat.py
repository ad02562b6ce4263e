"""
Pydantic schemas for Chat API

This module defines request/response models for the portfolio chat
endpoints.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.search import SearchResultItem


# ========================================
# Chat Schemas
# ========================================

class ChatRequest(BaseModel):
    """Request schema for one chat turn."""

    message: str = Field(
        description="User's message",
        min_length=1,
        max_length=4000
    )

    session_key: str = Field(
        description="Client-generated session key",
        min_length=1,
        max_length=255
    )

    include_history: bool = Field(
        default=True,
        description="Send recent history to the model"
    )


class RelevantProject(BaseModel):
    """Project attached to the reply."""

    id: int = Field(description="Project ID")
    title: str = Field(description="Project title")
    slug: str = Field(description="Project slug")
    summary: Optional[str] = Field(default=None, description="Project summary")
    url: Optional[str] = Field(default=None, description="Project URL")
    similarity: float = Field(description="Search similarity of the project")


class ChatResponse(BaseModel):
    """Response schema for one chat turn."""

    response: str = Field(description="Assistant reply")
    session_id: int = Field(description="Session ID")
    relevant_project: Optional[RelevantProject] = Field(
        default=None,
        description="Project shown next to the reply"
    )
    project_image: Optional[str] = Field(
        default=None,
        description="Image URL of the relevant project"
    )
    context: List[SearchResultItem] = Field(
        default_factory=list,
        description="Search results used as context"
    )


class ChatProjectsResponse(BaseModel):
    """Project titles the assistant can answer about."""

    projects: List[str] = Field(description="Titles, featured projects first, then alphabetical")
    last_updated: datetime = Field(description="When the list was read")


# ========================================
# History Schemas
# ========================================

class HistoryMessage(BaseModel):
    """One stored chat message."""

    id: int = Field(description="Message ID")
    role: str = Field(description="Message role: user or assistant")
    content: str = Field(description="Message content")
    created_at: datetime = Field(description="Creation timestamp")
    project_id: Optional[int] = Field(default=None, description="Linked project ID")
    project_image: Optional[str] = Field(default=None, description="Linked project image")

    @classmethod
    def from_message(cls, message) -> "HistoryMessage":
        link = message.project_link
        return cls(
            id=message.id,
            role=str(message.role),
            content=message.content,
            created_at=message.created_at,
            project_id=link.project_id if link else None,
            project_image=link.project_image if link else None,
        )


class ChatHistoryResponse(BaseModel):
    """Response schema for chat history."""

    messages: List[HistoryMessage] = Field(description="Messages, oldest first")
    count: int = Field(description="Number of messages returned")


# ========================================
# Session Schemas
# ========================================

class SessionLookupResponse(BaseModel):
    """Response schema for a session key lookup."""

    session_id: Optional[int] = Field(default=None, description="Session ID, null if unknown")


class SessionResponse(BaseModel):
    """Response schema for a chat session."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="Session ID")
    title: str = Field(description="Session title")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last activity timestamp")


class SessionListResponse(BaseModel):
    """Response schema for recent sessions."""

    sessions: List[SessionResponse] = Field(description="Most recently active first")
