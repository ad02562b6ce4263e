"""
Retry Policy

One bounded retry-with-backoff policy shared by the embedding generator and
the store access layer, instead of ad-hoc retry loops at each call site.

Backoff schedule:
-----------------
delay(n) = min(backoff_seconds * multiplier ** n, backoff_max_seconds)

With the defaults (0.5s, x2, max 4s, 3 attempts): 0.5s, 1.0s between tries.
Retries are always bounded; there is no "retry forever" mode.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from app.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    Usage:
    ------
    policy = RetryPolicy(max_attempts=3, retry_on=(TimeoutError,))
    vector = await policy.run(model_call, "some text")
    """

    max_attempts: int = 3
    backoff_seconds: float = 0.5
    backoff_max_seconds: float = 4.0
    multiplier: float = 2.0
    retry_on: tuple[type[BaseException], ...] = field(default=(Exception,))

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_seconds < 0 or self.backoff_max_seconds < 0:
            raise ValueError("backoff delays must be non-negative")

    def delays(self) -> Iterator[float]:
        """Yield the pause before each retry (max_attempts - 1 values)."""
        for attempt in range(self.max_attempts - 1):
            yield min(
                self.backoff_seconds * (self.multiplier ** attempt),
                self.backoff_max_seconds,
            )

    async def run(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        operation: Optional[str] = None,
        **kwargs: Any,
    ) -> T:
        """
        Await func(*args, **kwargs), retrying retryable errors.

        Non-retryable exceptions propagate immediately. After the last
        attempt the last retryable exception is re-raised unchanged.
        """
        name = operation or getattr(func, "__name__", "operation")
        delays = self.delays()

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(f"{name} failed after {attempt} attempt(s): {e}")
                    raise

                delay = next(delays)
                logger.warning(
                    f"{name} attempt {attempt}/{self.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        # max_attempts >= 1 means the loop always returns or raises
        raise RuntimeError("unreachable")


def default_retry_policy(
    retry_on: tuple[type[BaseException], ...] = (Exception,)
) -> RetryPolicy:
    """Build a RetryPolicy from settings."""
    return RetryPolicy(
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        backoff_seconds=settings.RETRY_BACKOFF_SECONDS,
        backoff_max_seconds=settings.RETRY_BACKOFF_MAX_SECONDS,
        retry_on=retry_on,
    )
