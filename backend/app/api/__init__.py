"""
API routes initialization.

This module aggregates all API routers and provides a single router
to include in the main application.
"""

from fastapi import APIRouter

from app.api.routes import chat, search

# Create main API router
api_router = APIRouter()

# Include Search routes
api_router.include_router(search.router)

# Include Chat routes
api_router.include_router(chat.router)
