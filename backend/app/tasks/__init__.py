"""
Celery tasks for background processing.
"""

from app.tasks.embedding_tasks import (
    index_all_content,
    index_content_item,
    prune_orphaned_embeddings,
    remove_content_embedding,
)

__all__ = [
    "index_all_content",
    "index_content_item",
    "prune_orphaned_embeddings",
    "remove_content_embedding",
]
