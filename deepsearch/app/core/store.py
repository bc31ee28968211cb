"""Byte-valued key/value storage with expiry.

The rate limiter and the result cache only need five things: get, set with
a TTL, delete, clear and a counter increment that is atomic across every
caller. ``InMemoryStore`` gives those inside one process; ``RedisStore``
gives them to every replica sharing a Redis database.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable
import asyncio
import time


# KEYS[1] counter, ARGV[1] ttl in ms. The expiry is set on creation only.
INCREMENT_WITH_EXPIRY_SCRIPT = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end
    return count
"""


@dataclass
class _StoreEntry:
    value: bytes
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class StoreBackend(ABC):
    """Interface implemented by every store.

    ``ttl`` arguments are seconds for ``set`` and milliseconds for
    ``increment``; a non-positive value means the key never expires.
    """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the stored bytes, or ``None`` for a missing or expired key."""

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: float) -> None: ...

    @abstractmethod
    async def increment(self, key: str, ttl_ms: int) -> int:
        """Add one to a counter and return the new count.

        A missing counter starts at 0 and receives ``ttl_ms``. Increments of
        an existing counter leave its expiry untouched.
        """

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def clear(self) -> None: ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryStore(StoreBackend):
    """Dictionary-backed store for a single process.

    Expired keys are dropped when they are next read, or in bulk through
    ``cleanup_expired()``. ``clock`` returns seconds and exists so tests can
    move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: dict[str, _StoreEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _deadline(self, seconds: float) -> float | None:
        return self._clock() + seconds if seconds > 0 else None

    def _lookup(self, key: str) -> _StoreEntry | None:
        entry = self._data.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._data[key]
            entry = None
        return entry

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._lookup(key)
        return None if entry is None else entry.value

    async def set(self, key: str, value: bytes, ttl: float) -> None:
        async with self._lock:
            self._data[key] = _StoreEntry(value, self._deadline(ttl))

    async def increment(self, key: str, ttl_ms: int) -> int:
        async with self._lock:
            entry = self._lookup(key)
            if entry is None:
                entry = self._data[key] = _StoreEntry(b"0", self._deadline(ttl_ms / 1000))
            count = int(entry.value) + 1
            entry.value = str(count).encode()
        return count

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()

    async def cleanup_expired(self) -> int:
        """Drop every expired key and return how many were dropped."""
        async with self._lock:
            now = self._clock()
            stale = [key for key, entry in self._data.items() if entry.is_expired(now)]
            for key in stale:
                del self._data[key]
        return len(stale)


class RedisStore(StoreBackend):
    """Store shared through Redis.

    The client is created lazily from ``redis_url`` unless a ready
    ``redis.asyncio.Redis`` is passed as ``redis_client``.
    """

    def __init__(self, redis_url: str | None = None, redis_client: Any | None = None) -> None:
        self._redis_url = redis_url
        self._redis = redis_client

    def _get_client(self) -> Any:
        if self._redis is None:
            if self._redis_url is None:
                raise RuntimeError("RedisStore needs either redis_url or redis_client")
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def get(self, key: str) -> bytes | None:
        value = await self._get_client().get(key)
        return value.encode() if isinstance(value, str) else value

    async def set(self, key: str, value: bytes, ttl: float) -> None:
        client = self._get_client()
        if ttl <= 0:
            await client.set(key, value)
            return
        await client.set(key, value, px=max(1, int(ttl * 1000)))

    async def increment(self, key: str, ttl_ms: int) -> int:
        count = await self._get_client().eval(INCREMENT_WITH_EXPIRY_SCRIPT, 1, key, int(ttl_ms))
        return int(count)

    async def delete(self, key: str) -> None:
        await self._get_client().delete(key)

    async def clear(self) -> None:
        """FLUSHDB. Wipes the whole Redis database, not only this service's keys."""
        await self._get_client().flushdb()

    async def ping(self) -> bool:
        return bool(await self._get_client().ping())

    async def close(self) -> None:
        client, self._redis = self._redis, None
        if client is not None:
            await client.aclose()


_store_instance: StoreBackend | None = None


def get_store(
    backend: str | None = None,
    redis_url: str | None = None,
    force_new: bool = False,
) -> StoreBackend:
    """Return the process-wide store, creating it on first call.

    Args:
        backend: ``"memory"`` or ``"redis"``. ``None`` follows
            ``settings.redis_enabled``.
        redis_url: Overrides ``settings.redis_url``.
        force_new: Replace an existing instance.
    """
    global _store_instance
    if _store_instance is None or force_new:
        from deepsearch.app.core.config import settings

        use_redis = settings.redis_enabled if backend is None else backend == "redis"
        _store_instance = (
            RedisStore(redis_url or settings.redis_url) if use_redis else InMemoryStore()
        )
    return _store_instance


def reset_store() -> None:
    global _store_instance
    _store_instance = None
