"""
RAG (Retrieval-Augmented Generation) Services

This package contains all services for the portfolio chat pipeline:
- Hybrid search (vector + lexical) over facts and projects
- Context formatting for the LLM prompt
- Query intent analysis
- Generation (Claude integration)
- Conversation management and project linking
- Chat turn orchestration
"""

from app.services.rag.chat_service import ChatService, ChatTurn, create_chat_service
from app.services.rag.context_formatter import format_context
from app.services.rag.conversation_service import ConversationService, create_conversation_service
from app.services.rag.generator import (
    GenerationRequest,
    PortfolioResponseGenerator,
    create_response_generator,
)
from app.services.rag.intent import QueryIntent, analyze_query_intent
from app.services.rag.project_linker import ProjectLinker, create_project_linker
from app.services.rag.search import HybridSearchEngine, create_search_engine
from app.services.rag.types import SearchOutcome, SearchResult

__all__ = [
    "ChatService",
    "ChatTurn",
    "create_chat_service",
    "format_context",
    "ConversationService",
    "create_conversation_service",
    "GenerationRequest",
    "PortfolioResponseGenerator",
    "create_response_generator",
    "QueryIntent",
    "analyze_query_intent",
    "ProjectLinker",
    "create_project_linker",
    "HybridSearchEngine",
    "create_search_engine",
    "SearchOutcome",
    "SearchResult",
]
