"""
Pydantic schemas for request/response validation.

Import all schemas here for easy access.
"""

from app.schemas.chat import (
    ChatHistoryResponse,
    ChatRequest,
    ChatResponse,
    HistoryMessage,
    RelevantProject,
    SessionListResponse,
    SessionLookupResponse,
    SessionResponse,
)
from app.schemas.search import SearchRequest, SearchResponse, SearchResultItem

__all__ = [
    # Search
    "SearchRequest",
    "SearchResponse",
    "SearchResultItem",
    # Chat
    "ChatRequest",
    "ChatResponse",
    "RelevantProject",
    "HistoryMessage",
    "ChatHistoryResponse",
    # Sessions
    "SessionLookupResponse",
    "SessionResponse",
    "SessionListResponse",
]
