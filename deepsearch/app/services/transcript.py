"""Conversation transcript models.

A ``Message`` carries its plain ``content`` plus ordered ``parts``: text,
model reasoning and tool invocations. Tool invocation parts move through
``pending -> called -> completed`` and never move backwards.
"""

import uuid
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ToolInvocationState(str, Enum):
    PENDING = "pending"
    CALLED = "called"
    COMPLETED = "completed"


_STATE_ORDER = {
    ToolInvocationState.PENDING: 0,
    ToolInvocationState.CALLED: 1,
    ToolInvocationState.COMPLETED: 2,
}


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    reasoning: str


class ToolInvocationPart(BaseModel):
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_call_id: str
    tool_name: str
    args: dict = Field(default_factory=dict)
    state: ToolInvocationState = ToolInvocationState.PENDING
    result: Optional[Any] = None

    def advance(self, state: ToolInvocationState, result: Any = None) -> None:
        """Move the invocation forward to ``state``.

        Raises:
            ValueError: If ``state`` is earlier than the current state.
        """
        if _STATE_ORDER[state] < _STATE_ORDER[self.state]:
            raise ValueError(
                f"Tool invocation {self.tool_call_id} cannot go from "
                f"{self.state.value} back to {state.value}"
            )
        self.state = state
        if result is not None:
            self.result = result


Part = Annotated[
    Union[TextPart, ReasoningPart, ToolInvocationPart],
    Field(discriminator="type"),
]


class Message(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Literal["user", "assistant", "tool"]
    content: str = ""
    parts: List[Part] = Field(default_factory=list)

    def tool_invocations(self) -> List[ToolInvocationPart]:
        return [p for p in self.parts if isinstance(p, ToolInvocationPart)]


def first_user_text(messages: List[Message]) -> Optional[str]:
    """Return the content of the first user message, if any."""
    for message in messages:
        if message.role == "user":
            return message.content
    return None
