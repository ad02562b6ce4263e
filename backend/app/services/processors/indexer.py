"""
Content Indexer

Builds and maintains the embedding index over facts and projects.

Pipeline per item:
------------------
1. Build the canonical embedding text
   - fact:    "{title}: {content}" (+ "Category: ..." / "Keywords: ..." lines)
   - project: "Project: {title}\\nSlug: ...\\nDescription: ...\\nSummary: ...
              \\nTools: ...\\nTags: ...\\nFeatures: ..."
2. Skip if already indexed (unless force=True)
3. Embed
4. Upsert the Embedding row for (content_id, content_type)

Batch behavior:
---------------
- Families (facts, projects) load independently; one failing to load is
  recorded in the report and the other still runs
- Items run in groups of EMBEDDING_INDEX_BATCH_SIZE with a pause of
  EMBEDDING_INDEX_BATCH_DELAY_SECONDS between groups (model rate limits)
- A failing item is recorded and the batch continues
- Re-running with force=False over unchanged content skips everything

Concurrency:
------------
Indexing of one key is serialized inside the process by a per-key lock.
Across processes the unique constraint on (content_id, content_type)
decides: the losing insert is rolled back and retried as an update, so the
last writer wins and there is never more than one row per key.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from sqlalchemy import delete, exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import EmbeddingFailure, IndexingFailure
from app.models.content import Fact, Project
from app.models.embedding import ContentType, Embedding
from app.services.processors.embedder import TextEmbedder

logger = logging.getLogger(__name__)


CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"


# ========================================
# Indexing Report
# ========================================

@dataclass
class IndexingReport:
    """Counts of one indexing run plus the individual failures."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[IndexingFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    def record(self, outcome: str) -> None:
        if outcome == CREATED:
            self.created += 1
        elif outcome == UPDATED:
            self.updated += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        else:
            raise ValueError(f"Unknown indexing outcome: {outcome}")

    def record_failure(self, failure: IndexingFailure) -> None:
        self.failed += 1
        self.failures.append(failure)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "failures": [
                {
                    "content_type": failure.content_type,
                    "content_id": failure.content_id,
                    "reason": failure.reason,
                }
                for failure in self.failures
            ],
        }


@dataclass(frozen=True)
class IndexEntry:
    """Snapshot of one item to index, detached from the ORM session."""

    content_type: ContentType
    content_id: int
    text: str


# ========================================
# Canonical Embedding Text
# ========================================

def build_fact_text(fact: Fact) -> str:
    """Canonical text of a fact; "" when the fact has no title or body."""
    title = (fact.title or "").strip()
    content = (fact.content or "").strip()
    if not title and not content:
        return ""

    lines = [f"{title}: {content}"]
    if fact.category:
        lines.append(f"Category: {fact.category}")
    if fact.keywords:
        lines.append(f"Keywords: {', '.join(fact.keywords)}")
    return "\n".join(lines)


def build_project_text(project: Project) -> str:
    """Canonical text of a project; "" when the project has no title."""
    title = (project.title or "").strip()
    if not title:
        return ""

    return (
        f"Project: {title}\n"
        f"Slug: {project.slug or ''}\n"
        f"Description: {project.description or ''}\n"
        f"Summary: {project.summary or ''}\n"
        f"Tools: {', '.join(project.tool_names)}\n"
        f"Tags: {', '.join(project.tag_names)}\n"
        f"Features: {', '.join(project.features or [])}"
    )


# ========================================
# Per-key Locks
# ========================================

# asyncio locks belong to one event loop; Celery tasks run a new loop per task.
# A key's lock lives only while some coroutine holds or waits on it.
_key_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, weakref.WeakValueDictionary[tuple[str, int], asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _lock_for(content_type: ContentType, content_id: int) -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    locks = _key_locks.get(loop)
    if locks is None:
        locks = _key_locks[loop] = weakref.WeakValueDictionary()
    key = (content_type.value, content_id)
    lock = locks.get(key)
    if lock is None:
        lock = locks[key] = asyncio.Lock()
    return lock


# ========================================
# Content Indexer
# ========================================

class ContentIndexer:
    """
    Creates and refreshes embeddings for facts and projects.

    Usage:
    ------
    indexer = ContentIndexer(db, embedder)

    report = await indexer.index_all()            # only missing items
    report = await indexer.index_all(force=True)  # re-embed everything

    await indexer.index_item(ContentType.PROJECT, 12, force=True)
    await indexer.remove_embedding(ContentType.FACT, 7)
    removed = await indexer.prune_orphaned_embeddings()
    """

    def __init__(
        self,
        db: AsyncSession,
        embedder: TextEmbedder,
        batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
    ):
        """
        Args:
            db: Database session
            embedder: Embedding generator
            batch_size: Items per group (default EMBEDDING_INDEX_BATCH_SIZE)
            batch_delay_seconds: Pause between groups
                (default EMBEDDING_INDEX_BATCH_DELAY_SECONDS)
        """
        self.db = db
        self.embedder = embedder
        self.batch_size = batch_size or settings.EMBEDDING_INDEX_BATCH_SIZE
        self.batch_delay_seconds = (
            settings.EMBEDDING_INDEX_BATCH_DELAY_SECONDS
            if batch_delay_seconds is None else batch_delay_seconds
        )

        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")

    # ================================
    # Batch Indexing
    # ================================

    async def index_all(self, force: bool = False) -> IndexingReport:
        """
        Index every fact and project.

        Args:
            force: Re-embed items that already have an embedding

        Returns:
            IndexingReport with created/updated/skipped/failed counts
        """
        report = IndexingReport()
        entries: list[IndexEntry] = []

        for content_type in (ContentType.FACT, ContentType.PROJECT):
            try:
                loaded = await self._load_entries(content_type)
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Could not load {content_type} content: {e}")
                report.record_failure(
                    IndexingFailure(content_type.value, None, f"could not load content: {e}")
                )
                continue

            logger.info(f"Loaded {len(loaded)} {content_type} items for indexing")
            entries.extend(loaded)

        batch_count = (len(entries) + self.batch_size - 1) // self.batch_size

        for batch_number, start in enumerate(range(0, len(entries), self.batch_size), start=1):
            batch = entries[start:start + self.batch_size]
            logger.info(f"Processing batch {batch_number}/{batch_count} ({len(batch)} items)")

            for entry in batch:
                try:
                    report.record(await self._index_entry(entry, force))
                except IndexingFailure as failure:
                    logger.warning(str(failure))
                    report.record_failure(failure)

            if batch_number < batch_count and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)

        logger.info(
            f"Indexing complete: created={report.created}, updated={report.updated}, "
            f"skipped={report.skipped}, failed={report.failed}"
        )

        return report

    async def index_item(
        self,
        content_type: Union[ContentType, str],
        content_id: int,
        force: bool = False,
    ) -> str:
        """
        Index a single item (e.g. right after the admin layer saves it).

        Returns:
            "created", "updated" or "skipped"

        Raises:
            IndexingFailure: Missing item, blank text, embedding or store error
        """
        content_type = ContentType(content_type)

        try:
            item = await self.db.get(_model_for(content_type), content_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise IndexingFailure(content_type.value, content_id, f"could not load item: {e}") from e

        if item is None:
            raise IndexingFailure(content_type.value, content_id, "content item does not exist")

        return await self._index_entry(_entry_for(content_type, item), force)

    # ================================
    # Removal
    # ================================

    async def remove_embedding(
        self,
        content_type: Union[ContentType, str],
        content_id: int,
    ) -> bool:
        """
        Delete the embedding of an item (call when the item is deleted).

        Returns:
            True if a row was deleted
        """
        content_type = ContentType(content_type)

        async with _lock_for(content_type, content_id):
            try:
                result = await self.db.execute(
                    delete(Embedding)
                    .where(
                        Embedding.content_type == content_type,
                        Embedding.content_id == content_id,
                    )
                    .execution_options(synchronize_session="fetch")
                )
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise IndexingFailure(content_type.value, content_id, f"could not delete: {e}") from e

        removed = result.rowcount > 0
        if removed:
            logger.info(f"Removed embedding for {content_type} {content_id}")
        return removed

    async def prune_orphaned_embeddings(self) -> int:
        """
        Delete embeddings whose fact or project no longer exists.

        Returns:
            Number of rows deleted
        """
        removed = 0
        try:
            for content_type in (ContentType.FACT, ContentType.PROJECT):
                model = _model_for(content_type)
                result = await self.db.execute(
                    delete(Embedding)
                    .where(
                        Embedding.content_type == content_type,
                        ~exists().where(model.id == Embedding.content_id),
                    )
                    .execution_options(synchronize_session=False)
                )
                removed += result.rowcount or 0
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to prune orphaned embeddings: {e}")
            raise

        logger.info(f"Pruned {removed} orphaned embeddings")
        return removed

    # ================================
    # Internals
    # ================================

    async def _load_entries(self, content_type: ContentType) -> list[IndexEntry]:
        model = _model_for(content_type)
        result = await self.db.execute(select(model).order_by(model.id))
        return [_entry_for(content_type, item) for item in result.scalars().all()]

    async def _index_entry(self, entry: IndexEntry, force: bool) -> str:
        content_type, content_id = entry.content_type, entry.content_id

        if not entry.text.strip():
            raise IndexingFailure(content_type.value, content_id, "canonical text is empty")

        async with _lock_for(content_type, content_id):
            try:
                existing = await self._get_record(content_type, content_id)
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise IndexingFailure(content_type.value, content_id, f"store error: {e}") from e

            if existing is not None and not force:
                return SKIPPED

            try:
                vector = await self.embedder.embed_text(entry.text)
            except (EmbeddingFailure, ValueError) as e:
                raise IndexingFailure(content_type.value, content_id, f"embedding failed: {e}") from e

            outcome = await self._upsert(entry, vector, existing)

        logger.debug(f"{outcome.capitalize()} embedding for {content_type} {content_id}")
        return outcome

    async def _upsert(
        self,
        entry: IndexEntry,
        vector: list[float],
        existing: Optional[Embedding],
    ) -> str:
        content_type, content_id = entry.content_type, entry.content_id

        try:
            if existing is None:
                self.db.add(Embedding(
                    content_id=content_id,
                    content_type=content_type,
                    embedding=vector,
                    embedded_text=entry.text,
                    embedding_model=self.embedder.model_name,
                    chunk_index=0,
                ))
                await self.db.commit()
                return CREATED

            self._apply(existing, entry, vector)
            await self.db.commit()
            return UPDATED

        except IntegrityError:
            # Another writer inserted this key first; overwrite its row
            await self.db.rollback()
            logger.info(f"Embedding for {content_type} {content_id} created concurrently, updating")
            try:
                record = await self._get_record(content_type, content_id)
                if record is None:
                    raise IndexingFailure(
                        content_type.value, content_id, "conflicting row disappeared"
                    )
                self._apply(record, entry, vector)
                await self.db.commit()
                return UPDATED
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise IndexingFailure(content_type.value, content_id, f"store error: {e}") from e

        except SQLAlchemyError as e:
            await self.db.rollback()
            raise IndexingFailure(content_type.value, content_id, f"store error: {e}") from e

    def _apply(self, record: Embedding, entry: IndexEntry, vector: list[float]) -> None:
        record.embedding = vector
        record.embedded_text = entry.text
        record.embedding_model = self.embedder.model_name
        record.chunk_index = 0

    async def _get_record(self, content_type: ContentType, content_id: int) -> Optional[Embedding]:
        result = await self.db.execute(
            select(Embedding).where(
                Embedding.content_type == content_type,
                Embedding.content_id == content_id,
            )
        )
        return result.scalar_one_or_none()


def _model_for(content_type: ContentType) -> type[Union[Fact, Project]]:
    if content_type == ContentType.FACT:
        return Fact
    if content_type == ContentType.PROJECT:
        return Project
    raise ValueError(f"Unsupported content type: {content_type}")


def _entry_for(content_type: ContentType, item: Union[Fact, Project]) -> IndexEntry:
    if isinstance(item, Fact):
        text = build_fact_text(item)
    elif isinstance(item, Project):
        text = build_project_text(item)
    else:
        raise TypeError(f"Unsupported content item: {type(item).__name__}")
    return IndexEntry(content_type=content_type, content_id=item.id, text=text)


def create_content_indexer(db: AsyncSession, embedder: TextEmbedder) -> ContentIndexer:
    """Create a content indexer instance."""
    return ContentIndexer(db, embedder)
