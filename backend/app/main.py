"""
Main FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import EmbeddingFailure, PersistenceFailure
from app.core.logging import get_logger, setup_logging
from app.db.session import check_db_health, close_db, create_engine, create_session_factory, init_db
from app.services.processors.embedder import get_embedding_service, shutdown_embedding_service
from app.services.rag.generator import PortfolioResponseGenerator

# Setup logging
setup_logging()
logger = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan events.

    Startup puts the database engine, the session factory, the embedding
    model and the response generator on app.state; shutdown releases them.
    """
    # Startup
    logger.info(
        "starting_application",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        version=VERSION,
    )

    engine = create_engine()
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    await init_db(engine)

    try:
        app.state.embedder = await get_embedding_service()
    except EmbeddingFailure as e:
        # Search and chat answer 503 until the model can be loaded
        logger.error("embedding_model_unavailable", error=str(e))
        app.state.embedder = None

    if settings.ANTHROPIC_API_KEY:
        app.state.generator = PortfolioResponseGenerator()
    else:
        logger.warning("anthropic_api_key_missing", detail="chat endpoint disabled")
        app.state.generator = None

    yield

    # Shutdown
    logger.info("shutting_down_application")

    await shutdown_embedding_service()
    await close_db(engine)


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Portfolio Assistant - retrieval and chat API",
    version=VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check(request: Request) -> JSONResponse:
    """
    Health check endpoint for monitoring.
    Includes database connectivity and embedding model status.
    """
    engine = getattr(request.app.state, "engine", None)
    db_healthy = engine is not None and await check_db_health(engine)
    embedder_ready = getattr(request.app.state, "embedder", None) is not None

    return JSONResponse(
        status_code=200 if db_healthy else 503,
        content={
            "status": "healthy" if db_healthy else "unhealthy",
            "app_name": settings.APP_NAME,
            "environment": settings.APP_ENV,
            "version": VERSION,
            "database": "connected" if db_healthy else "disconnected",
            "embedding_model": "loaded" if embedder_ready else "unavailable",
            "chat": "enabled" if getattr(request.app.state, "generator", None) else "disabled",
        }
    )


# Include API routers
from app.api import api_router
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.exception_handler(PersistenceFailure)
async def persistence_failure_handler(request: Request, exc: PersistenceFailure) -> JSONResponse:
    """Store errors while saving chat state."""
    logger.error(
        "persistence_failure",
        error=str(exc),
        path=request.url.path,
        method=request.method,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "persistence_failure",
                "message": "Could not save the conversation. Please try again.",
            }
        },
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled errors.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
            }
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
