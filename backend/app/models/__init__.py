"""
Database Models

Import models from this module to ensure they're registered with SQLAlchemy:

    from app.models import Fact, Project, Embedding, ConversationSession

This ensures that:
1. Alembic can detect all models for migrations
2. Relationships resolve correctly
3. Base.metadata.create_all() creates every table (tests, development)
"""

from app.models.content import (
    Fact,
    Project,
    ProjectImage,
    Tag,
    Tool,
    project_tags,
    project_tools,
)
from app.models.conversation import (
    ChatAnalytics,
    ChatMessage,
    ChatProjectLink,
    ConversationSession,
    MessageRole,
)
from app.models.embedding import ContentType, Embedding

__all__ = [
    # Content models
    "Fact",
    "Project",
    "ProjectImage",
    "Tool",
    "Tag",
    "project_tools",
    "project_tags",
    # Embedding index
    "Embedding",
    "ContentType",
    # Conversation models
    "ConversationSession",
    "ChatMessage",
    "ChatProjectLink",
    "ChatAnalytics",
    "MessageRole",
]
