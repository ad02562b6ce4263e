"""Database utilities and session management."""

from app.db.base import (
    Base,
    BaseModel,
    JSONType,
    String50,
    String100,
    String255,
    String500,
    String1000,
    utc_now,
    vector_type,
)
from app.db.deps import DBSession, get_db, get_db_override
from app.db.session import (
    check_db_health,
    close_db,
    create_engine,
    create_session_factory,
    get_session,
    init_db,
)

__all__ = [
    # Base classes
    "Base",
    "BaseModel",
    # Column types
    "JSONType",
    "vector_type",
    "utc_now",
    "String50",
    "String100",
    "String255",
    "String500",
    "String1000",
    # Session management
    "create_engine",
    "create_session_factory",
    "get_session",
    "init_db",
    "close_db",
    "check_db_health",
    # Dependencies
    "get_db",
    "DBSession",
    "get_db_override",
]
