"""
Chat API Routes

This module provides REST API endpoints for the portfolio chat:
- Send a message and get a reply (with an optional project card)
- Stream the reply as server-sent events
- List the projects the assistant knows about
- Read a session's history
- Look up and list sessions

Sessions are identified by a client-generated session_key; no
authentication is involved.

Stream events (one JSON object per "data:" line):
-------------------------------------------------
{"type": "metadata", "session_id", "relevant_project", "project_image", "context"}
{"type": "content", "content": "<p>Partial"}
{"type": "done", "message_id": 12}
{"type": "error", "error": "Streaming error", "message": "..."}
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from app.api.deps import EmbedderDep, GeneratorDep
from app.core.exceptions import GenerationFailure, PersistenceFailure
from app.db.deps import DBSession
from app.schemas.chat import (
    ChatHistoryResponse,
    ChatProjectsResponse,
    ChatRequest,
    ChatResponse,
    HistoryMessage,
    RelevantProject,
    SessionListResponse,
    SessionLookupResponse,
    SessionResponse,
)
from app.schemas.search import SearchResultItem
from app.services.rag.chat_service import ChatStream, create_chat_service, list_project_titles
from app.services.rag.conversation_service import create_conversation_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

STREAM_ERROR_MESSAGE = "There was an error generating the response. Please try again."


def sse_event(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


# ========================================
# Chat
# ========================================

@router.post("", response_model=ChatResponse)
async def chat(
    chat_request: ChatRequest,
    db: DBSession,
    embedder: EmbedderDep,
    generator: GeneratorDep,
):
    """
    Run one chat turn.

    The user message is stored, relevant content is retrieved, the reply is
    generated and stored, and the most relevant project is linked to it.

    Raises:
        400: Blank message or session key
        500: Message could not be stored (persistence_failure)
        502: Reply generation failed or timed out
    """
    service = create_chat_service(db, embedder, generator)

    try:
        turn = await service.chat(
            chat_request.session_key,
            chat_request.message,
            include_history=chat_request.include_history,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except GenerationFailure as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to generate response: {e}"
        )

    project = turn.relevant_project_dict()

    return ChatResponse(
        response=turn.response,
        session_id=turn.session_id,
        relevant_project=RelevantProject(**project) if project else None,
        project_image=turn.project_image,
        context=[SearchResultItem.from_result(result) for result in turn.search.results],
    )


@router.post("/stream")
async def chat_stream(
    chat_request: ChatRequest,
    db: DBSession,
    embedder: EmbedderDep,
    generator: GeneratorDep,
):
    """
    Run one chat turn, streaming the reply as server-sent events.

    The user message is stored and the context retrieved before the
    response starts, so those errors still map to status codes. Once the
    stream is open, failures are reported as an "error" event.

    Raises:
        400: Blank message or session key
        500: User message could not be stored (persistence_failure)
    """
    service = create_chat_service(db, embedder, generator)

    try:
        stream = await service.chat_stream(
            chat_request.session_key,
            chat_request.message,
            include_history=chat_request.include_history,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return StreamingResponse(
        stream_events(stream),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


async def stream_events(stream: ChatStream) -> AsyncIterator[str]:
    """Serialize a chat stream: metadata, content chunks, then done or error."""
    yield sse_event({
        "type": "metadata",
        "session_id": stream.session_id,
        "relevant_project": stream.relevant_project_dict(),
        "project_image": stream.project_image,
        "context": [
            SearchResultItem.from_result(result).model_dump(mode="json")
            for result in stream.search.results
        ],
    })

    try:
        async for text in stream.chunks():
            yield sse_event({"type": "content", "content": text})
    except (GenerationFailure, PersistenceFailure) as e:
        logger.error(f"Chat stream for session {stream.session_id} failed: {e}")
        yield sse_event({"type": "error", "error": "Streaming error", "message": STREAM_ERROR_MESSAGE})
        return

    yield sse_event({"type": "done", "message_id": stream.turn.assistant_message_id})


# ========================================
# Projects
# ========================================

@router.get("/projects", response_model=ChatProjectsResponse)
async def list_chat_projects(db: DBSession):
    """Titles of all projects, featured first, for the chat's suggestion list."""
    return ChatProjectsResponse(
        projects=await list_project_titles(db),
        last_updated=datetime.now(timezone.utc),
    )


# ========================================
# History and Sessions
# ========================================

@router.get("/history", response_model=ChatHistoryResponse)
async def get_chat_history(
    db: DBSession,
    session_key: str = Query(min_length=1, max_length=255),
    limit: int = Query(default=50, ge=1, le=200),
):
    """
    Most recent messages of a session, oldest first.

    Assistant messages carry the project image linked when they were
    created. An unknown session key returns an empty list.
    """
    conv_service = create_conversation_service(db)

    session_id = await conv_service.find_session_id(session_key)
    if session_id is None:
        return ChatHistoryResponse(messages=[], count=0)

    messages = await conv_service.list_messages(session_id, limit)

    return ChatHistoryResponse(
        messages=[HistoryMessage.from_message(message) for message in messages],
        count=len(messages),
    )


@router.get("/session", response_model=SessionLookupResponse)
async def get_session_id(
    db: DBSession,
    session_key: str = Query(min_length=1, max_length=255),
):
    """Session ID for a key without creating it (null if unknown)."""
    conv_service = create_conversation_service(db)
    return SessionLookupResponse(session_id=await conv_service.find_session_id(session_key))


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    db: DBSession,
    limit: int = Query(default=20, ge=1, le=100),
):
    """Most recently active sessions first."""
    conv_service = create_conversation_service(db)
    sessions = await conv_service.list_sessions(limit=limit)
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(session) for session in sessions]
    )
