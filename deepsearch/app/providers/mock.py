"""Mock model provider for testing purposes.

This provider simulates model responses without making external API calls.
Tests script it step by step; development and load testing use the default
research responder, which searches, scrapes the top results and answers
with citations, like a well-behaved model would.

Enable for the running service by setting environment variable:
    MOCK_PROVIDER=true
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Sequence, Union

from deepsearch.app.providers.base import (
    ModelEvent,
    ModelProvider,
    StepEnd,
    TextDelta,
    ToolCallRequest,
)
from deepsearch.app.services.transcript import Message, ToolInvocationState
from deepsearch.app.tools import SCRAPE_TOOL_NAME, SEARCH_TOOL_NAME
from deepsearch.app.tools.base import Tool

Responder = Callable[[List[Message], Dict[str, Tool], bool], Sequence[ModelEvent]]
ScriptStep = Union[str, ToolCallRequest, Sequence[ModelEvent]]


@dataclass
class MockCall:
    """One recorded ``stream_step`` call."""

    messages: List[Message]
    tool_names: List[str]
    system: Optional[str]
    allow_tools: bool = True
    events: List[ModelEvent] = field(default_factory=list)


def tool_call(name: str, **args: Any) -> ToolCallRequest:
    """Build a tool call request with a fresh call id."""
    return ToolCallRequest(id=f"call_{uuid.uuid4().hex[:12]}", name=name, args=args)


def text_events(text: str, chunk_words: int = 4) -> List[ModelEvent]:
    """Split ``text`` into word-chunk deltas, keeping the exact text."""
    words = text.split(" ")
    return [
        TextDelta(text=" ".join(words[i:i + chunk_words]) + (" " if i + chunk_words < len(words) else ""))
        for i in range(0, len(words), chunk_words)
    ]


def _normalize(step: ScriptStep) -> List[ModelEvent]:
    if isinstance(step, str):
        return text_events(step)
    if isinstance(step, ToolCallRequest):
        return [step]
    return list(step)


def scripted(steps: Sequence[ScriptStep]) -> Responder:
    """Responder that plays ``steps`` in order, repeating the last one.

    Each step is a text answer, a single tool call or a list of events.
    Tool call ids are regenerated when the last step repeats so replays
    never share an id.
    """
    if not steps:
        raise ValueError("scripted() needs at least one step")
    plays = {"count": 0}

    def respond(messages: List[Message], tools: Dict[str, Tool], allow_tools: bool) -> List[ModelEvent]:
        index = min(plays["count"], len(steps) - 1)
        plays["count"] += 1
        replay = plays["count"] > len(steps)
        events = []
        for event in _normalize(steps[index]):
            if isinstance(event, ToolCallRequest) and replay:
                event = ToolCallRequest(
                    id=f"call_{uuid.uuid4().hex[:12]}", name=event.name, args=dict(event.args)
                )
            events.append(event)
        return events

    return respond


def _turn_messages(messages: List[Message]) -> tuple[str, List[Message]]:
    """Split into the latest user query and the messages after it."""
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].role == "user":
            return messages[i].content, messages[i + 1:]
    return "", list(messages)


def research_responder(
    messages: List[Message], tools: Dict[str, Tool], allow_tools: bool
) -> List[ModelEvent]:
    """Search, then scrape the top results, then answer citing the pages."""
    query, since_query = _turn_messages(messages)
    results: Dict[str, Any] = {}
    for message in since_query:
        for part in message.tool_invocations():
            if part.state == ToolInvocationState.COMPLETED:
                results[part.tool_name] = part.result

    if allow_tools and SEARCH_TOOL_NAME in tools and SEARCH_TOOL_NAME not in results:
        return [tool_call(SEARCH_TOOL_NAME, query=query)]

    links = [item["link"] for item in results.get(SEARCH_TOOL_NAME) or [] if item.get("link")]
    if allow_tools and SCRAPE_TOOL_NAME in tools and SCRAPE_TOOL_NAME not in results and links:
        return [tool_call(SCRAPE_TOOL_NAME, urls=links[:3])]

    scraped = results.get(SCRAPE_TOOL_NAME) or {}
    sources = [r["url"] for r in scraped.get("results", []) if r.get("success")] or links[:3]
    if not sources:
        return text_events(f"I could not find any sources about {query}.")
    citations = " ".join(f"[source]({url})" for url in sources)
    return text_events(f"Here is what I found about {query}. {citations}")


class MockProvider(ModelProvider):
    """Mock model that returns scripted or simulated responses.

    Args:
        responder: Produces the events of each step. Defaults to
            ``research_responder``.
        delay: Simulated delay in seconds before each event.
    """

    def __init__(self, responder: Optional[Responder] = None, delay: float = 0.0):
        self.responder = responder or research_responder
        self.delay = delay
        self.calls: List[MockCall] = []

    async def stream_step(
        self,
        messages: List[Message],
        tools: Dict[str, Tool],
        system: Optional[str] = None,
        allow_tools: bool = True,
    ) -> AsyncGenerator[ModelEvent, None]:
        call = MockCall(
            messages=[m.model_copy(deep=True) for m in messages],
            tool_names=list(tools),
            system=system,
            allow_tools=allow_tools,
        )
        self.calls.append(call)
        call.events = list(self.responder(messages, tools, allow_tools))

        for event in call.events:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield event

        if not call.events or not isinstance(call.events[-1], StepEnd):
            has_calls = any(isinstance(e, ToolCallRequest) for e in call.events)
            yield StepEnd(finish_reason="tool_calls" if has_calls else "stop")
