#!/usr/bin/env python3
"""
Generate embeddings for all facts and projects.

Runs the content indexer in-process (no Celery worker needed):
1. Loads the embedding model
2. Indexes every fact and project in batches
3. Prints created / updated / skipped / failed counts

Usage:
    python scripts/generate_embeddings.py           # only items without an embedding
    python scripts/generate_embeddings.py --force   # re-embed everything
    python scripts/generate_embeddings.py --prune   # also delete orphaned embeddings

Exit code is 1 if any item failed.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.logging import setup_logging
from app.db.session import close_db, create_engine, create_session_factory, init_db
from app.services.processors.embedder import get_embedding_service, shutdown_embedding_service
from app.services.processors.indexer import ContentIndexer


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate embeddings for portfolio content")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-embed items that already have an embedding",
    )
    parser.add_argument(
        "--prune",
        action="store_true",
        help="Delete embeddings whose fact or project no longer exists",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Items per batch (default: EMBEDDING_INDEX_BATCH_SIZE)",
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()

    print("🚀 Generating embeddings" + (" (force)" if args.force else ""))

    engine = create_engine()
    try:
        await init_db(engine, create_tables=False)
        embedder = await get_embedding_service()

        async with create_session_factory(engine)() as db:
            indexer = ContentIndexer(db, embedder, batch_size=args.batch_size)
            report = await indexer.index_all(force=args.force)

            pruned = None
            if args.prune:
                pruned = await indexer.prune_orphaned_embeddings()
    finally:
        await shutdown_embedding_service()
        await close_db(engine)

    print(f"✅ Created: {report.created}")
    print(f"🔄 Updated: {report.updated}")
    print(f"⏭️  Skipped: {report.skipped}")
    print(f"❌ Failed:  {report.failed}")
    for failure in report.failures:
        print(f"   - {failure.content_type} {failure.content_id}: {failure.reason}")
    if pruned is not None:
        print(f"🧹 Pruned {pruned} orphaned embeddings")

    return 1 if report.failed else 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
