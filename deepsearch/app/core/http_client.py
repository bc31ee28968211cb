"""Outbound HTTP for the search and scrape tools.

The app lifespan owns one pooled ``httpx.AsyncClient``; tools borrow it via
``get_http_client()``. Code running outside the app (tests, one-off calls)
builds a private client with ``create_http_client()`` and closes it itself.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from deepsearch.app.core.config import settings

_client: httpx.AsyncClient | None = None


def _build_client(timeout: httpx.Timeout) -> httpx.AsyncClient:
    limits = httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=settings.httpx_max_keepalive_connections,
        keepalive_expiry=settings.httpx_keepalive_expiry,
    )
    return httpx.AsyncClient(timeout=timeout, limits=limits, follow_redirects=True)


def _configured_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=settings.httpx_connect_timeout,
        read=settings.httpx_read_timeout,
        write=settings.httpx_write_timeout,
        pool=settings.httpx_pool_timeout,
    )


def get_http_client() -> httpx.AsyncClient:
    """Return the lifespan-owned client.

    Raises:
        RuntimeError: Outside ``init_http_client()``.
    """
    if _client is None:
        raise RuntimeError("HTTP client not initialized. Ensure lifespan context is active.")
    return _client


@asynccontextmanager
async def init_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    global _client
    _client = _build_client(_configured_timeout())
    try:
        yield _client
    finally:
        client, _client = _client, None
        await client.aclose()


def create_http_client(timeout: float | None = None) -> httpx.AsyncClient:
    """Build a standalone client. A plain ``timeout`` replaces the per-phase ones."""
    return _build_client(httpx.Timeout(timeout) if timeout is not None else _configured_timeout())
