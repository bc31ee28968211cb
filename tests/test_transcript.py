"""Tests for transcript message models."""

import pytest
from pydantic import TypeAdapter

from deepsearch.app.services.transcript import (
    Message,
    ReasoningPart,
    TextPart,
    ToolInvocationPart,
    ToolInvocationState,
    first_user_text,
)


class TestToolInvocationPart:
    """Tests for tool invocation state transitions."""

    def test_starts_pending(self):
        part = ToolInvocationPart(tool_call_id="c1", tool_name="searchWeb", args={"query": "q"})
        assert part.state == ToolInvocationState.PENDING
        assert part.result is None

    def test_advances_forward(self):
        part = ToolInvocationPart(tool_call_id="c1", tool_name="searchWeb")
        part.advance(ToolInvocationState.CALLED)
        part.advance(ToolInvocationState.COMPLETED, [{"link": "https://a.example"}])
        assert part.state == ToolInvocationState.COMPLETED
        assert part.result == [{"link": "https://a.example"}]

    def test_cannot_move_backwards(self):
        part = ToolInvocationPart(tool_call_id="c1", tool_name="searchWeb")
        part.advance(ToolInvocationState.COMPLETED, "done")
        with pytest.raises(ValueError, match="cannot go from completed back to called"):
            part.advance(ToolInvocationState.CALLED)


class TestMessage:
    """Tests for Message parsing and helpers."""

    def test_parts_discriminated_by_type(self):
        message = Message.model_validate(
            {
                "role": "assistant",
                "content": "Answer",
                "parts": [
                    {"type": "reasoning", "reasoning": "thinking"},
                    {"type": "text", "text": "Answer"},
                    {
                        "type": "tool-invocation",
                        "tool_call_id": "c1",
                        "tool_name": "searchWeb",
                        "args": {"query": "q"},
                        "state": "completed",
                        "result": [],
                    },
                ],
            }
        )
        assert isinstance(message.parts[0], ReasoningPart)
        assert isinstance(message.parts[1], TextPart)
        assert isinstance(message.parts[2], ToolInvocationPart)
        assert message.tool_invocations() == [message.parts[2]]

    def test_unknown_part_type_rejected(self):
        with pytest.raises(ValueError):
            Message.model_validate({"role": "user", "parts": [{"type": "image", "url": "x"}]})

    def test_ids_are_generated(self):
        assert Message(role="user").id != Message(role="user").id

    def test_dump_round_trip(self):
        message = Message(
            role="assistant",
            parts=[ToolInvocationPart(tool_call_id="c1", tool_name="scrapePages", args={"urls": ["u"]})],
        )
        restored = TypeAdapter(Message).validate_json(message.model_dump_json())
        assert restored == message


class TestFirstUserText:
    def test_returns_first_user_message(self):
        messages = [
            Message(role="assistant", content="Hello"),
            Message(role="user", content="first"),
            Message(role="user", content="second"),
        ]
        assert first_user_text(messages) == "first"

    def test_no_user_message(self):
        assert first_user_text([Message(role="assistant", content="Hi")]) is None
