"""OpenAI chat completions provider.

Compatible with the OpenAI API and other OpenAI-compatible endpoints
(e.g., DeepSeek, OpenRouter, local LLMs with an OpenAI-compatible API).
"""

import json
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx
from openai import APIError, AsyncOpenAI

from deepsearch.app.core.config import settings
from deepsearch.app.core.logging import get_logger
from deepsearch.app.exceptions import ModelInvocationError
from deepsearch.app.providers.base import (
    ModelEvent,
    ModelProvider,
    ReasoningDelta,
    StepEnd,
    TextDelta,
    ToolCallRequest,
)
from deepsearch.app.services.transcript import (
    Message,
    TextPart,
    ToolInvocationState,
)
from deepsearch.app.tools.base import Tool

logger = get_logger(__name__)


def to_openai_messages(messages: List[Message], system: Optional[str] = None) -> List[Dict[str, Any]]:
    """Convert transcript messages into chat completion messages.

    Completed tool invocations on an assistant message become that message's
    ``tool_calls`` followed by one ``tool`` message per result. Invocations
    that never completed are left out, since the API rejects a tool call
    without a matching result.
    """
    result: List[Dict[str, Any]] = []
    if system:
        result.append({"role": "system", "content": system})

    for message in messages:
        completed = [
            p for p in message.tool_invocations()
            if p.state == ToolInvocationState.COMPLETED
        ]
        text = message.content or "".join(
            p.text for p in message.parts if isinstance(p, TextPart)
        )

        if message.role == "user":
            result.append({"role": "user", "content": text})
            continue

        if message.role == "assistant":
            entry: Dict[str, Any] = {"role": "assistant", "content": text or None}
            if completed:
                entry["tool_calls"] = [
                    {
                        "id": p.tool_call_id,
                        "type": "function",
                        "function": {
                            "name": p.tool_name,
                            "arguments": json.dumps(p.args, ensure_ascii=False),
                        },
                    }
                    for p in completed
                ]
            elif not text:
                continue
            result.append(entry)

        for p in completed:
            result.append({
                "role": "tool",
                "tool_call_id": p.tool_call_id,
                "content": json.dumps(p.result, ensure_ascii=False, default=str),
            })

    return result


class _ToolCallBuffer:
    """Accumulates one streamed tool call from its fragments."""

    def __init__(self):
        self.id = ""
        self.name = ""
        self.arguments = ""

    def feed(self, fragment: Any) -> None:
        if fragment.id:
            self.id = fragment.id
        function = fragment.function
        if function is not None:
            if function.name:
                self.name += function.name
            if function.arguments:
                self.arguments += function.arguments

    def build(self) -> ToolCallRequest:
        try:
            args = json.loads(self.arguments) if self.arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ModelInvocationError(
                f"Model returned malformed arguments for tool '{self.name}': {e}"
            ) from e
        if not isinstance(args, dict):
            raise ModelInvocationError(
                f"Model returned non-object arguments for tool '{self.name}'"
            )
        return ToolCallRequest(id=self.id, name=self.name, args=args)


class OpenAIProvider(ModelProvider):
    """Streams chat completions with tool calling through ``AsyncOpenAI``.

    Streamed tool-call fragments are accumulated by index and emitted as
    complete ``ToolCallRequest`` events once the stream ends. Reasoning
    deltas are surfaced when the endpoint sends ``reasoning_content``
    (DeepSeek reasoner and compatible models).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model or settings.model_name
        self._client = client or AsyncOpenAI(
            api_key=api_key or settings.openai_api_key,
            base_url=base_url or settings.openai_base_url,
            timeout=timeout or settings.model_timeout,
            http_client=http_client,
        )

    async def stream_step(
        self,
        messages: List[Message],
        tools: Dict[str, Tool],
        system: Optional[str] = None,
        allow_tools: bool = True,
    ) -> AsyncGenerator[ModelEvent, None]:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(messages, system),
            "stream": True,
        }
        if tools:
            request["tools"] = [tool.to_openai() for tool in tools.values()]
            request["tool_choice"] = "auto" if allow_tools else "none"

        buffers: Dict[int, _ToolCallBuffer] = {}
        finish_reason: Optional[str] = None

        try:
            stream = await self._client.chat.completions.create(**request)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    reasoning = getattr(delta, "reasoning_content", None)
                    if reasoning:
                        yield ReasoningDelta(reasoning=reasoning)
                    if delta.content:
                        yield TextDelta(text=delta.content)
                    for fragment in delta.tool_calls or []:
                        buffers.setdefault(fragment.index, _ToolCallBuffer()).feed(fragment)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except (APIError, httpx.HTTPError) as e:
            logger.error(f"Model call failed: {type(e).__name__}: {e}")
            raise ModelInvocationError(f"Model call failed: {e}") from e

        for index in sorted(buffers):
            yield buffers[index].build()

        logger.debug(
            f"Model step finished: reason={finish_reason}, tool_calls={len(buffers)}"
        )
        yield StepEnd(finish_reason=finish_reason)

    async def aclose(self) -> None:
        await self._client.close()
