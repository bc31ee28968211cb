from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

from deepsearch.app.services.transcript import Message
from deepsearch.app.tools.base import Tool


@dataclass
class TextDelta:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text-delta", "text": self.text}


@dataclass
class ReasoningDelta:
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "reasoning-delta", "reasoning": self.reasoning}


@dataclass
class ToolCallRequest:
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StepEnd:
    finish_reason: Optional[str] = None


ModelEvent = Union[TextDelta, ReasoningDelta, ToolCallRequest, StepEnd]


class ModelProvider(ABC):
    """Base class for language model backends.

    A provider performs exactly one model round trip per ``stream_step``
    call. It never executes tools itself: tool calls are reported as
    ``ToolCallRequest`` events and the agent loop decides what to do with
    them.
    """

    @abstractmethod
    def stream_step(
        self,
        messages: List[Message],
        tools: Dict[str, Tool],
        system: Optional[str] = None,
        allow_tools: bool = True,
    ) -> AsyncGenerator[ModelEvent, None]:
        """Stream one model response.

        Args:
            messages: The conversation so far, including earlier tool results
            tools: Tools the model may call, keyed by name
            system: System prompt for this call
            allow_tools: When False the model must answer in text only

        Yields:
            ``TextDelta``, ``ReasoningDelta`` and ``ToolCallRequest`` events,
            then a single ``StepEnd``.

        Raises:
            ModelInvocationError: If the model call fails.
        """
        pass

    async def aclose(self) -> None:
        """Release any client resources held by the provider."""
        return None
