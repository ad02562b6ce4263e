"""
Celery tasks for embedding index maintenance.

This module contains background tasks for:
- Indexing all facts and projects (missing only, or forced)
- (Re)indexing a single item after the admin layer saves it
- Removing the embedding of a deleted item
- Pruning embeddings whose content no longer exists

Tasks run on demand; nothing is scheduled. Each task opens its own engine
for the lifetime of the run because every Celery invocation runs in a fresh
event loop.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from celery import Task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import IndexingFailure
from app.core.logging import get_logger
from app.db.session import close_db, create_engine, create_session_factory
from app.services.processors.embedder import TextEmbedder, get_embedding_service
from app.services.processors.indexer import ContentIndexer
from app.workers.celery_app import celery_app

logger = get_logger(__name__)


# ========================================
# Async Helper
# ========================================

def run_async(coro):
    """
    Run async coroutine, handling both event loop and no event loop scenarios.

    - Production (Celery worker with no event loop): asyncio.run()
    - Tests (pytest with a running loop): asyncio.run() in a worker thread
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    import concurrent.futures

    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(asyncio.run, coro).result()


# ========================================
# Helper Functions
# ========================================

@asynccontextmanager
async def task_session(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Database session for one task run.

    Without a factory a dedicated engine is created and disposed afterwards.
    """
    if session_factory is not None:
        async with session_factory() as session:
            yield session
        return

    engine = create_engine()
    try:
        async with create_session_factory(engine)() as session:
            yield session
    finally:
        await close_db(engine)


async def _resolve_embedder(embedder: Optional[TextEmbedder]) -> TextEmbedder:
    return embedder if embedder is not None else await get_embedding_service()


async def index_all_content_async(
    force: bool = False,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    embedder: Optional[TextEmbedder] = None,
) -> dict:
    """Index every fact and project; returns the report as a dict."""
    start_time = time.time()
    embedder = await _resolve_embedder(embedder)

    async with task_session(session_factory) as db:
        report = await ContentIndexer(db, embedder).index_all(force=force)

    result = {
        'success': report.failed == 0,
        'force': force,
        **report.to_dict(),
        'processing_time_seconds': round(time.time() - start_time, 2),
    }
    logger.info(
        "index_all_content_finished",
        created=report.created,
        updated=report.updated,
        skipped=report.skipped,
        failed=report.failed,
    )
    return result


async def index_content_item_async(
    content_type: str,
    content_id: int,
    force: bool = True,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    embedder: Optional[TextEmbedder] = None,
) -> dict:
    """Index one item; failures are reported, not raised."""
    embedder = await _resolve_embedder(embedder)

    async with task_session(session_factory) as db:
        try:
            outcome = await ContentIndexer(db, embedder).index_item(
                content_type, content_id, force=force
            )
        except IndexingFailure as e:
            logger.warning(
                "index_content_item_failed",
                content_type=content_type,
                content_id=content_id,
                reason=e.reason,
            )
            return {
                'success': False,
                'content_type': content_type,
                'content_id': content_id,
                'error': e.reason,
            }

    logger.info(
        "index_content_item_finished",
        content_type=content_type,
        content_id=content_id,
        outcome=outcome,
    )
    return {
        'success': True,
        'content_type': content_type,
        'content_id': content_id,
        'outcome': outcome,
    }


async def remove_content_embedding_async(
    content_type: str,
    content_id: int,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> dict:
    """Delete the embedding of one item."""
    async with task_session(session_factory) as db:
        # Removal never embeds, so the indexer gets no embedder
        removed = await ContentIndexer(db, embedder=None).remove_embedding(content_type, content_id)

    logger.info(
        "remove_content_embedding_finished",
        content_type=content_type,
        content_id=content_id,
        removed=removed,
    )
    return {
        'success': True,
        'content_type': content_type,
        'content_id': content_id,
        'removed': removed,
    }


async def prune_orphaned_embeddings_async(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> dict:
    """Delete embeddings of content that no longer exists."""
    async with task_session(session_factory) as db:
        removed = await ContentIndexer(db, embedder=None).prune_orphaned_embeddings()

    logger.info("prune_orphaned_embeddings_finished", removed=removed)
    return {'success': True, 'embeddings_deleted': removed}


# ========================================
# Base Task Class
# ========================================

class EmbeddingTask(Task):
    """Base task class with retry logic and error handling."""

    autoretry_for = (Exception,)
    retry_kwargs = {'max_retries': 3}
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True


# ========================================
# Main Tasks
# ========================================

@celery_app.task(
    base=EmbeddingTask,
    name='embedding.index_all_content',
    bind=True,
    max_retries=3
)
def index_all_content(self, force: bool = False) -> dict:
    """
    Index all facts and projects.

    Per-item failures are recorded in the result and do not fail the task;
    only infrastructure errors (e.g. the model cannot load) trigger a retry.

    Args:
        force: Re-embed items that already have an embedding

    Returns:
        {
            'success': bool,
            'force': bool,
            'created': int, 'updated': int, 'skipped': int, 'failed': int,
            'failures': [{'content_type', 'content_id', 'reason'}],
            'processing_time_seconds': float
        }
    """
    logger.info("index_all_content_started", force=force, task_id=self.request.id)
    return run_async(index_all_content_async(force=force))


@celery_app.task(
    base=EmbeddingTask,
    name='embedding.index_content_item',
    bind=True,
    max_retries=3
)
def index_content_item(self, content_type: str, content_id: int, force: bool = True) -> dict:
    """
    (Re)index one fact or project.

    Args:
        content_type: "fact" or "project"
        content_id: Id of the item
        force: Re-embed even if an embedding exists (default True, since
            the usual caller has just changed the item)
    """
    return run_async(index_content_item_async(content_type, content_id, force=force))


@celery_app.task(
    base=EmbeddingTask,
    name='embedding.remove_content_embedding',
    bind=True,
    max_retries=3
)
def remove_content_embedding(self, content_type: str, content_id: int) -> dict:
    """Delete the embedding of a deleted fact or project."""
    return run_async(remove_content_embedding_async(content_type, content_id))


@celery_app.task(
    name='embedding.prune_orphaned_embeddings',
    bind=True
)
def prune_orphaned_embeddings(self) -> dict:
    """
    Clean up orphaned embeddings (embeddings whose fact or project was deleted).

    Returns:
        Dictionary with cleanup results
    """
    return run_async(prune_orphaned_embeddings_async())
