"""
Database Dependencies for FastAPI Routes

Dependency functions that hand a database session to a route.

The session factory lives on app.state (created in the lifespan in
app/main.py), so get_db reads it from the incoming request instead of a
module-level global. Tests swap it out with app.dependency_overrides.

Usage:
------
@router.get("/chat/history")
async def history(session_key: str, db: DBSession):
    service = create_conversation_service(db)
    ...

Testing:
--------
app.dependency_overrides[get_db] = get_db_override(test_session)
"""

from collections.abc import AsyncGenerator, Callable
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_session


# ================================
# Database Session Dependency
# ================================

async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session.

    Each request gets its own session; services commit their own work and
    the session is rolled back and closed on error.

    Yields:
        AsyncSession: Database session for the current request
    """
    session_factory = request.app.state.session_factory
    async for session in get_session(session_factory):
        yield session


# Reusable annotation: async def route(db: DBSession)
DBSession = Annotated[AsyncSession, Depends(get_db)]


# ================================
# Testing Helpers
# ================================

def get_db_override(
    session: AsyncSession,
) -> Callable[[], AsyncGenerator[AsyncSession, None]]:
    """
    Create a dependency override yielding a fixed session.

    Usage in Tests:
    ---------------
    app.dependency_overrides[get_db] = get_db_override(db_session)
    response = await client.get("/api/v1/chat/sessions")
    app.dependency_overrides.clear()

    Args:
        session: The session to use instead of the real one

    Returns:
        A function that yields the test session
    """
    async def _override() -> AsyncGenerator[AsyncSession, None]:
        yield session

    return _override


__all__ = [
    "get_db",
    "DBSession",
    "get_db_override",
]
