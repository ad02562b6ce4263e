"""
Integration tests package.

Integration tests drive the FastAPI app through httpx's ASGITransport,
with the in-memory SQLite database and the embedder/generator doubles
from conftest.py. They need no PostgreSQL, model download or API key.

To run only integration tests:
    pytest tests/integration/ -v -m integration

To skip them:
    pytest tests/ -v -m "not integration"
"""
