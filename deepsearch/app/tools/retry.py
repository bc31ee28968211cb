"""Backoff for page fetches.

Only failures a second attempt can fix are retried: connection errors,
timeouts, HTTP 429 and 5xx. Everything else propagates immediately.
"""

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from deepsearch.app.core.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

TRANSIENT_ERRORS = (httpx.NetworkError, httpx.TimeoutException)


@dataclass
class RetryPolicy:
    """Exponential backoff settings.

    The wait before retry ``n`` (0-based) is
    ``min(base_delay * exponential_base ** n, max_delay)`` seconds.
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        return min(self.base_delay * self.exponential_base**attempt, self.max_delay)

    def is_retryable(self, exception: Exception) -> bool:
        if isinstance(exception, httpx.HTTPStatusError):
            status = exception.response.status_code
            return status == 429 or status >= 500
        return isinstance(exception, TRANSIENT_ERRORS)


def with_retry(policy: Optional[RetryPolicy] = None) -> Callable[[F], F]:
    """Retry the decorated coroutine function according to ``policy``."""
    policy = policy or RetryPolicy()

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(policy.max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not policy.is_retryable(e) or attempt == policy.max_retries:
                        raise
                    delay = policy.calculate_delay(attempt)
                    logger.warning(
                        f"Retry {attempt + 1}/{policy.max_retries} for {func.__name__} "
                        f"in {delay:.2f}s ({type(e).__name__}: {e})"
                    )
                    await asyncio.sleep(delay)

        return wrapper  # type: ignore[return-value]

    return decorator
