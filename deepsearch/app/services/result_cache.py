"""Memoization of async operations in the shared store.

``memoize`` wraps an async function so calls with structurally equal
arguments within the TTL reuse the stored result instead of repeating
expensive I/O. Results live in the shared store (Redis in production), so
they are reused across requests, processes and restarts.
"""

import asyncio
import functools
import hashlib
import json
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import TypeAdapter

from deepsearch.app.core.config import settings
from deepsearch.app.core.logging import get_logger
from deepsearch.app.core.store import StoreBackend, get_store
from deepsearch.app.core.utils import to_jsonable

logger = get_logger(__name__)

T = TypeVar("T")


def stable_serialize(*args: Any, **kwargs: Any) -> str:
    """Serialize call arguments deterministically.

    Mapping keys are sorted at every depth, so ``{"a": 1, "b": 2}`` and
    ``{"b": 2, "a": 1}`` produce the same string.
    """
    payload = {"args": to_jsonable(list(args)), "kwargs": to_jsonable(kwargs)}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def make_cache_key(name: str, *args: Any, **kwargs: Any) -> str:
    """Build the store key for a call of ``name`` with the given arguments."""
    digest = hashlib.sha256(stable_serialize(*args, **kwargs).encode()).hexdigest()
    return f"{settings.cache_key_prefix}cache:{name}:{digest}"


def memoize(
    name: str,
    fn: Callable[..., Awaitable[T]],
    *,
    store: Optional[StoreBackend] = None,
    ttl: Optional[int] = None,
    result_type: Any = None,
    single_flight: bool = False,
) -> Callable[..., Awaitable[T]]:
    """Wrap ``fn`` so results are cached in the store under ``name``.

    A call that raises is never cached, so the next call retries ``fn``.
    A call that returns normally is cached as-is, including aggregates that
    carry per-item failures.

    Store errors are logged and treated as a miss (on read) or a skipped
    write, never surfaced to the caller.

    Args:
        name: Cache namespace for this function, part of every key.
        fn: The async function to memoize.
        store: Store backend. Defaults to the global store.
        ttl: Entry lifetime in seconds. Defaults to settings.scrape_cache_ttl_seconds.
        result_type: Type used to rebuild cached values (e.g. a pydantic model).
            When omitted, cached values come back as plain JSON data.
        single_flight: When True, concurrent misses for the same key in this
            process share one call of ``fn`` instead of each running it.
            The shared call runs as its own task, so cancelling one caller
            leaves the others waiting on it.

    Returns:
        An async function with the same signature as ``fn``.
    """
    adapter = TypeAdapter(result_type) if result_type is not None else None
    in_flight: dict[str, asyncio.Task] = {}

    def _store() -> StoreBackend:
        return store if store is not None else get_store()

    def _decode(raw: bytes) -> Any:
        if adapter is not None:
            return adapter.validate_json(raw)
        return json.loads(raw)

    def _encode(value: Any) -> bytes:
        if adapter is not None:
            return adapter.dump_json(value)
        return json.dumps(to_jsonable(value), ensure_ascii=False).encode()

    async def _load(key: str) -> tuple[bool, Any]:
        try:
            raw = await _store().get(key)
        except Exception as e:
            logger.warning(f"Cache get failed for {name}: {e}")
            return False, None
        if raw is None:
            return False, None
        try:
            return True, _decode(raw)
        except ValueError as e:
            logger.warning(f"Discarding undecodable cache entry for {name}: {e}")
            return False, None

    async def _compute(key: str, args: tuple, kwargs: dict) -> T:
        result = await fn(*args, **kwargs)
        try:
            await _store().set(
                key,
                _encode(result),
                ttl=ttl if ttl is not None else settings.scrape_cache_ttl_seconds,
            )
        except Exception as e:
            logger.warning(f"Cache set failed for {name}: {e}")
        return result

    def _forget(key: str, task: asyncio.Task) -> None:
        if in_flight.get(key) is task:
            del in_flight[key]
        # Mark retrieved so a failure nobody awaited does not warn on GC
        if not task.cancelled():
            task.exception()

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        key = make_cache_key(name, *args, **kwargs)

        hit, value = await _load(key)
        if hit:
            logger.debug(f"Cache hit for {name}: {key[-16:]}")
            return value

        if not single_flight:
            return await _compute(key, args, kwargs)

        pending = in_flight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(_compute(key, args, kwargs))
            in_flight[key] = pending
            pending.add_done_callback(functools.partial(_forget, key))
        return await asyncio.shield(pending)

    return wrapper