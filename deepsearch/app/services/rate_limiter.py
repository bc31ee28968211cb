"""Global fixed-window rate limiter shared by every chat turn.

The limiter holds no counters itself: each window lives in the shared store
(Redis in production), so any number of processes admit requests against
the same budget.

For a key prefix ``P`` the store holds:

- ``ratelimit:P:window`` - start of the current window in epoch milliseconds
- ``ratelimit:P:<start>`` - number of requests recorded in that window

Windows are anchored to the first request after a cold start or reset, not
to the epoch. An elapsed window is reset lazily when it is next read.

``check`` and ``record`` are separate calls, so two turns can both pass
``check`` before either records and overshoot ``max_requests`` slightly.
That is accepted: the limiter throttles the service as a whole, it is not a
per-tenant quota.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from deepsearch.app.core.config import settings
from deepsearch.app.core.logging import get_logger
from deepsearch.app.core.store import StoreBackend, get_store

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limit configuration for one call site."""
    max_requests: int
    window_ms: int
    key_prefix: str

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be at least 1")
        if not self.key_prefix:
            raise ValueError("key_prefix cannot be empty")


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    reset_time: int  # epoch milliseconds when the current window rolls over


def default_rate_limit_config() -> RateLimitConfig:
    """The global chat admission limit from settings."""
    return RateLimitConfig(
        max_requests=settings.rate_limit_max_requests,
        window_ms=settings.rate_limit_window_ms,
        key_prefix=settings.rate_limit_key_prefix,
    )


class RateLimiter:
    """Check/record rate limiter over a shared store.

    Args:
        store: Store backend. Defaults to the global store.
        clock: Returns the current time in epoch milliseconds.
        sleep: Coroutine function sleeping for the given number of seconds.
    """

    def __init__(
        self,
        store: Optional[StoreBackend] = None,
        clock: Callable[[], int] = _now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._store = store or get_store()
        self._clock = clock
        self._sleep = sleep

    @staticmethod
    def _window_key(config: RateLimitConfig) -> str:
        return f"ratelimit:{config.key_prefix}:window"

    @staticmethod
    def _count_key(config: RateLimitConfig, window_start: int) -> str:
        return f"ratelimit:{config.key_prefix}:{window_start}"

    async def _current_window_start(self, config: RateLimitConfig, now: int) -> Optional[int]:
        """Return the start of the live window, or None if absent or elapsed."""
        raw = await self._store.get(self._window_key(config))
        if raw is None:
            return None
        window_start = int(raw)
        if now >= window_start + config.window_ms:
            return None
        return window_start

    async def check(self, config: RateLimitConfig) -> RateLimitResult:
        """Report whether a request would be admitted right now.

        Read only: never increments the count and never blocks.
        """
        now = self._clock()
        window_start = await self._current_window_start(config, now)

        if window_start is None:
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests,
                reset_time=now + config.window_ms,
            )

        raw_count = await self._store.get(self._count_key(config, window_start))
        count = int(raw_count) if raw_count is not None else 0
        return RateLimitResult(
            allowed=count < config.max_requests,
            remaining=max(0, config.max_requests - count),
            reset_time=window_start + config.window_ms,
        )

    async def record(self, config: RateLimitConfig) -> None:
        """Count one request against the current window.

        Starts a new window when none is live. Safe to call without a
        preceding ``check``; there is no rollback.
        """
        now = self._clock()
        window_start = await self._current_window_start(config, now)

        if window_start is None:
            window_start = now
            await self._store.set(
                self._window_key(config),
                str(window_start).encode(),
                ttl=config.window_ms / 1000,
            )

        await self._store.increment(self._count_key(config, window_start), config.window_ms)

    async def wait_for_admission(self, config: RateLimitConfig) -> RateLimitResult:
        """Block until the limiter admits a request, then record it.

        There is no retry limit: under sustained overload requests queue here
        instead of failing.

        Returns:
            The admitting check result.
        """
        result = await self.check(config)
        while not result.allowed:
            wait_ms = max(0, result.reset_time - self._clock())
            logger.info(
                "Rate limit exceeded, waiting",
                extra={"key_prefix": config.key_prefix, "wait_ms": wait_ms},
            )
            await self._sleep(wait_ms / 1000)
            result = await self.check(config)

        await self.record(config)
        return result


# Global limiter instance
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the rate limiter bound to the global store."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter (for tests)."""
    global _rate_limiter
    _rate_limiter = None
