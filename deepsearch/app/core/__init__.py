"""Core utilities for the chat service."""

from deepsearch.app.core.config import settings
from deepsearch.app.core.logging import get_logger, setup_logging
from deepsearch.app.core.store import (
    InMemoryStore,
    RedisStore,
    StoreBackend,
    get_store,
    reset_store,
)

__all__ = [
    "InMemoryStore",
    "RedisStore",
    "StoreBackend",
    "get_store",
    "reset_store",
    "settings",
    "get_logger",
    "setup_logging",
]
