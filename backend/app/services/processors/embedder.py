"""
Embedding Service

Embedding generation using sentence-transformers, run locally.

Model: sentence-transformers/all-MiniLM-L6-v2 (default)
- 384 dimensions
- Normalized output, so cosine similarity is a dot product
- Free (no API costs)

Features:
---------
- CPU/CUDA/MPS device support
- Model calls run in a worker thread (asyncio.to_thread)
- Per-attempt timeout (EMBEDDING_TIMEOUT_SECONDS)
- Bounded retries through the shared RetryPolicy
- Empty input is rejected rather than mapped to a zero vector
"""

import asyncio
import logging
from typing import Optional, Protocol, Sequence

import numpy as np
import torch
from sentence_transformers import SentenceTransformer

from app.core.config import settings
from app.core.exceptions import EmbeddingFailure
from app.core.retry import RetryPolicy, default_retry_policy


logger = logging.getLogger(__name__)


class TextEmbedder(Protocol):
    """What the indexer and the search engine need from an embedder."""

    model_name: str

    async def embed_text(self, text: str) -> list[float]:
        ...


class EmbeddingService:
    """
    Service for generating embeddings using sentence-transformers.

    Usage:
    ------
    embedder = EmbeddingService()
    await embedder.initialize()

    vector = await embedder.embed_text("What languages do you use?")

    Failure Handling:
    -----------------
    - Blank text: ValueError (caller bug, never retried)
    - Not initialized: EmbeddingFailure
    - Model error or timeout: retried per RetryPolicy, then EmbeddingFailure
      chained to the last error
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        normalize: bool = True,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize the embedding service.

        Args:
            model_name: Model name/path (default from settings)
            device: Device to use: cpu, cuda, mps (default from settings)
            normalize: Whether to L2-normalize embeddings (default True)
            retry_policy: Retry policy for model calls (default from settings)
            timeout_seconds: Per-attempt deadline (default from settings)
        """
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self.device = device or settings.EMBEDDING_DEVICE
        self.normalize = normalize
        self.retry_policy = retry_policy or default_retry_policy()
        self.timeout_seconds = timeout_seconds or settings.EMBEDDING_TIMEOUT_SECONDS

        self.model: Optional[SentenceTransformer] = None
        self._initialized = False

        self._validate_device()

    def _validate_device(self) -> None:
        """Validate and adjust device setting based on availability."""
        if self.device == "cuda" and not torch.cuda.is_available():
            logger.warning("CUDA not available, falling back to CPU")
            self.device = "cpu"
        elif self.device == "mps" and not torch.backends.mps.is_available():
            logger.warning("MPS not available, falling back to CPU")
            self.device = "cpu"

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Load the embedding model.

        Downloads the model if not cached. Call once at startup.

        Raises:
            EmbeddingFailure: If model loading fails
        """
        if self._initialized:
            logger.info("Embedding service already initialized")
            return

        try:
            logger.info(f"Loading embedding model: {self.model_name} on {self.device}")

            # Model loading is CPU-bound
            self.model = await asyncio.to_thread(
                SentenceTransformer,
                self.model_name,
                device=self.device
            )
        except Exception as e:
            logger.error(f"Failed to load embedding model: {e}")
            raise EmbeddingFailure(f"could not load model: {e}", model=self.model_name) from e

        self._initialized = True

        dimension = self.get_embedding_dimension()
        if dimension != settings.EMBEDDING_DIMENSION:
            logger.warning(
                f"Model dimension {dimension} differs from configured "
                f"EMBEDDING_DIMENSION={settings.EMBEDDING_DIMENSION}"
            )

        logger.info(
            f"Embedding model loaded successfully. "
            f"Dimension: {dimension}, Device: {self.device}"
        )

    def get_embedding_dimension(self) -> int:
        """Model output dimension, or the configured one before loading."""
        if not self._initialized or self.model is None:
            return settings.EMBEDDING_DIMENSION

        return self.model.get_sentence_embedding_dimension()

    async def embed_text(self, text: str) -> list[float]:
        """
        Generate the embedding for a single text.

        Args:
            text: Non-blank text to embed

        Returns:
            Embedding vector as a list of floats

        Raises:
            ValueError: If text is empty or whitespace only
            EmbeddingFailure: If the model is not loaded or all attempts fail
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        if not self._initialized or self.model is None:
            raise EmbeddingFailure(
                "embedding service not initialized, call initialize() first",
                model=self.model_name,
            )

        try:
            embedding = await self.retry_policy.run(
                self._embed_with_timeout,
                text,
                operation="embed_text",
            )
        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            raise EmbeddingFailure(str(e) or type(e).__name__, model=self.model_name) from e

        return embedding.tolist()

    async def _embed_with_timeout(self, text: str) -> np.ndarray:
        return await asyncio.wait_for(
            asyncio.to_thread(self._generate_single_embedding, text),
            timeout=self.timeout_seconds,
        )

    def _generate_single_embedding(self, text: str) -> np.ndarray:
        """Encode one text (sync, runs in thread pool)."""
        return self.model.encode(
            text,
            normalize_embeddings=self.normalize,
            show_progress_bar=False,
            convert_to_numpy=True,
        )

    async def shutdown(self) -> None:
        """Free the model. Call at application shutdown."""
        if self.model is not None:
            if self.device == "cuda":
                torch.cuda.empty_cache()

            del self.model
            self.model = None

        self._initialized = False
        logger.info("Embedding service shut down")


# ========================================
# Vector Math
# ========================================

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity clamped to [0, 1].

    Negative similarities count as "unrelated" (0.0). Zero-length or
    mismatched vectors raise ValueError.
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    if vec_a.shape != vec_b.shape:
        raise ValueError(f"Dimension mismatch: {vec_a.shape} vs {vec_b.shape}")

    norm = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if norm == 0.0:
        raise ValueError("Cannot compare a zero vector")

    similarity = float(np.dot(vec_a, vec_b)) / norm
    return min(1.0, max(0.0, similarity))


# ========================================
# Global Instance Management
# ========================================

_embedding_service: Optional[EmbeddingService] = None


async def get_embedding_service() -> EmbeddingService:
    """
    Get or create the process-wide embedding service.

    The model is loaded once per process (API worker, Celery worker or CLI).
    """
    global _embedding_service

    if _embedding_service is None:
        service = EmbeddingService()
        await service.initialize()
        _embedding_service = service

    return _embedding_service


async def shutdown_embedding_service() -> None:
    """Shutdown the process-wide embedding service."""
    global _embedding_service

    if _embedding_service is not None:
        await _embedding_service.shutdown()
        _embedding_service = None
