"""
Database Session Management

Engine and session-factory construction for the async SQLAlchemy store.

There is no module-level engine: the FastAPI lifespan, the Celery tasks and
the CLI script each build their own engine with create_engine() and pass the
session factory down explicitly. Tests build an in-memory SQLite engine the
same way.

Lifecycle:
----------
Application Start → create_engine() → create_session_factory() → init_db()
↓
Request → get_session(factory) → services → commit/rollback → close
↓
Shutdown → close_db(engine)
"""

from collections.abc import AsyncGenerator
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, StaticPool

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


# ================================
# Database Engine Configuration
# ================================

def get_engine_config(database_url: str) -> dict[str, Any]:
    """
    Engine keyword arguments for the given URL and environment.

    - PostgreSQL in development/production: queue pool sized from settings,
      pre-ping and hourly recycling
    - PostgreSQL elsewhere (staging/testing): NullPool for isolation
    - SQLite: in-memory databases need a StaticPool so every session sees
      the same connection
    """
    if database_url.startswith("sqlite"):
        config: dict[str, Any] = {"echo": settings.DB_ECHO}
        if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:"):
            config.update({
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            })
        return config

    config = {
        "echo": settings.DB_ECHO,
        "pool_pre_ping": True,
        "connect_args": {
            "server_settings": {
                "application_name": settings.APP_NAME,
            }
        },
    }

    if settings.is_development or settings.is_production:
        logger.info(
            "configuring_database_engine",
            environment=settings.APP_ENV,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
        config.update({
            "poolclass": AsyncAdaptedQueuePool,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": 30,
            "pool_recycle": 7200 if settings.is_production else 3600,
        })
    else:
        logger.info(
            "configuring_database_engine",
            environment=settings.APP_ENV,
            pool_type="NullPool",
        )
        config["poolclass"] = NullPool

    return config


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create an async engine.

    Args:
        database_url: Connection string (default: settings.DATABASE_URL).
            Use postgresql+asyncpg:// for PostgreSQL and
            sqlite+aiosqlite:// for SQLite.
    """
    url = database_url or settings.DATABASE_URL
    engine_config = get_engine_config(url)

    engine = create_async_engine(url, **engine_config)

    logger.info(
        "database_engine_created",
        dialect=engine.dialect.name,
        pool_size=engine_config.get("pool_size", "n/a"),
    )

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the engine.

    expire_on_commit=False keeps ORM objects readable after the services
    commit, which they do after every logical write.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


# ================================
# Session Lifecycle Functions
# ================================

async def get_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield one session; roll back and re-raise on error.

    Services commit their own units of work, so nothing is committed here.
    """
    async with session_factory() as session:
        try:
            yield session
        except Exception as e:
            logger.error(
                "database_session_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine, create_tables: Optional[bool] = None) -> None:
    """
    Verify connectivity and optionally create tables.

    Tables are created automatically in development; other environments use
    Alembic migrations.
    """
    logger.info("initializing_database")

    should_create = settings.is_development if create_tables is None else create_tables

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

        logger.info("database_connection_successful")

        if should_create:
            # Import models so they are registered on the metadata
            from app.db.base import Base
            import app.models  # noqa: F401

            async with engine.begin() as conn:
                if engine.dialect.name == "postgresql":
                    await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                await conn.run_sync(Base.metadata.create_all)

            logger.info("database_tables_created")

    except Exception as e:
        logger.error(
            "database_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the engine's connection pool."""
    logger.info("closing_database_connections")

    try:
        await engine.dispose()
        logger.info("database_connections_closed")

    except Exception as e:
        # Shutting down anyway
        logger.error(
            "database_closure_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


async def check_db_health(engine: AsyncEngine) -> bool:
    """Return True if a trivial query succeeds."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    except Exception as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        return False
