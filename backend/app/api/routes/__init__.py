"""
API route modules.

Import all route modules here for easy access.
"""

from app.api.routes import chat, search

__all__ = ["chat", "search"]
