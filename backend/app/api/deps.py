"""
Service Dependencies for FastAPI Routes

The embedding model and the response generator are created once in the
lifespan (app/main.py) and kept on app.state. Routes receive them through
these dependencies; tests put doubles on app.state or override them.

Usage:
------
@router.post("/search")
async def search(body: SearchRequest, db: DBSession, embedder: EmbedderDep):
    ...
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from app.services.processors.embedder import TextEmbedder
from app.services.rag.generator import ResponseGenerator


def get_embedder(request: Request) -> TextEmbedder:
    """Embedding model loaded at startup; 503 if it failed to load."""
    embedder = getattr(request.app.state, "embedder", None)
    if embedder is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embedding model is not available"
        )
    return embedder


def get_generator(request: Request) -> ResponseGenerator:
    """Response generator; 503 when no Anthropic API key is configured."""
    generator = getattr(request.app.state, "generator", None)
    if generator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat is not configured (ANTHROPIC_API_KEY missing)"
        )
    return generator


EmbedderDep = Annotated[TextEmbedder, Depends(get_embedder)]
GeneratorDep = Annotated[ResponseGenerator, Depends(get_generator)]
