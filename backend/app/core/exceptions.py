"""
Retrieval Engine Exceptions

Error taxonomy for the retrieval and conversation core.

Propagation rules:
------------------
- EmbeddingFailure: external model/transport error, surfaced to the caller
- IndexingFailure: per-item, recorded by the indexer, never aborts a batch
- SearchFailure: fatal to a single search call
- PersistenceFailure: store-level, fatal to the specific write
- LinkingFailure: advisory, logged and swallowed by chat orchestration
- GenerationFailure: LLM error or timeout, fatal to the chat turn
"""

from typing import Optional


class RetrievalError(Exception):
    """Base class for all retrieval/conversation core errors."""


class EmbeddingFailure(RetrievalError):
    """Raised when the embedding model cannot produce a vector."""

    def __init__(self, message: str, model: Optional[str] = None):
        self.model = model
        super().__init__(message if model is None else f"[{model}] {message}")


class IndexingFailure(RetrievalError):
    """Raised when a single content item cannot be indexed."""

    def __init__(self, content_type: str, content_id: Optional[int], reason: str):
        self.content_type = content_type
        self.content_id = content_id
        self.reason = reason
        super().__init__(f"Failed to index {content_type} {content_id}: {reason}")


class SearchFailure(RetrievalError):
    """Raised when a search cannot produce a ranking."""


class PersistenceFailure(RetrievalError):
    """Raised when a conversation write or read fails in the store."""


class LinkingFailure(RetrievalError):
    """Raised when a project cannot be linked to a chat message."""

    def __init__(self, message_id: int, reason: str):
        self.message_id = message_id
        self.reason = reason
        super().__init__(f"Cannot link project to message {message_id}: {reason}")


class GenerationFailure(RetrievalError):
    """Raised when the response generator fails or exceeds its deadline."""
