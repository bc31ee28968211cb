"""Model providers package for the DeepSearch chat service.

This package provides:
- Base provider interface and model events (ModelProvider, TextDelta, ...)
- OpenAI-compatible streaming provider (OpenAIProvider)
- Scripted mock provider for tests and development (MockProvider)
"""

from typing import Optional

from deepsearch.app.core.config import settings
from deepsearch.app.core.logging import get_logger
from deepsearch.app.providers.base import (
    ModelEvent,
    ModelProvider,
    ReasoningDelta,
    StepEnd,
    TextDelta,
    ToolCallRequest,
)
from deepsearch.app.providers.mock import MockProvider, scripted, tool_call
from deepsearch.app.providers.openai import OpenAIProvider

logger = get_logger(__name__)


def create_provider(mock: Optional[bool] = None) -> ModelProvider:
    """Create the model provider selected by configuration.

    Args:
        mock: Force the mock provider on or off. Defaults to
            settings.mock_provider.
    """
    use_mock = settings.mock_provider if mock is None else mock
    if use_mock:
        logger.info("Using mock model provider")
        return MockProvider()
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; model calls will fail")
    return OpenAIProvider()


__all__ = [
    # Base
    "ModelEvent",
    "ModelProvider",
    "ReasoningDelta",
    "StepEnd",
    "TextDelta",
    "ToolCallRequest",
    # Providers
    "MockProvider",
    "OpenAIProvider",
    # Helpers
    "create_provider",
    "scripted",
    "tool_call",
]
