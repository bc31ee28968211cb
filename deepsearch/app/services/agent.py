"""Bounded multi-step tool-calling loop.

Each step is one model round trip. When the model asks for tools, the calls
run concurrently, their results are appended to the transcript in the order
the model requested them, and the next step begins. The turn ends when the
model answers without calling tools, or when the step budget runs out. The
last step of the budget is always invoked with tools disabled, so the loop
never makes more than ``max_steps`` model calls and always ends with an
answer.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Union

from deepsearch.app.core.config import settings
from deepsearch.app.core.logging import get_log_context, get_logger
from deepsearch.app.core.utils import to_jsonable
from deepsearch.app.exceptions import (
    DeepSearchError,
    ModelInvocationError,
    ToolExecutionError,
)
from deepsearch.app.providers import create_provider
from deepsearch.app.providers.base import (
    ModelProvider,
    ReasoningDelta,
    StepEnd,
    TextDelta,
    ToolCallRequest,
)
from deepsearch.app.services.prompts import (
    FALLBACK_ANSWER,
    build_final_step_prompt,
    build_system_prompt,
)
from deepsearch.app.services.transcript import (
    Message,
    ReasoningPart,
    TextPart,
    ToolInvocationPart,
    ToolInvocationState,
)
from deepsearch.app.tools import build_tools
from deepsearch.app.tools.base import Tool

logger = get_logger(__name__)

OnFinish = Callable[[List[Message]], Awaitable[None]]


class AgentState(str, Enum):
    THINKING = "thinking"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    DONE = "done"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass
class ToolCallStarted:
    step: int
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "tool-call",
            "step": self.step,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
        }


@dataclass
class ToolCallCompleted:
    step: int
    tool_call_id: str
    tool_name: str
    result: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "tool-result",
            "step": self.step,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "result": self.result,
        }


@dataclass
class StepFinished:
    step: int
    finish_reason: Optional[str]
    tool_calls: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "step-finish",
            "step": self.step,
            "finishReason": self.finish_reason,
            "toolCalls": self.tool_calls,
        }


@dataclass
class TurnFinished:
    state: AgentState
    steps: int
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "finish",
            "state": self.state.value,
            "steps": self.steps,
            "text": self.text,
        }


AgentEvent = Union[
    TextDelta, ReasoningDelta, ToolCallStarted, ToolCallCompleted, StepFinished, TurnFinished
]


@dataclass
class AgentResult:
    text: str
    messages: List[Message] = field(default_factory=list)
    steps: int = 0
    state: AgentState = AgentState.DONE


class AgentLoop:
    """Drives a model through think / call tools / observe cycles.

    Args:
        provider: Model backend performing one round trip per step
        tools: Tools the model may call, keyed by name
        max_steps: Maximum number of model round trips. Defaults to
            settings.max_steps.
        system_prompt: System prompt. Defaults to the research prompt with
            today's date.
        on_finish: Awaited once with the response messages after the turn
            finishes cleanly. Never called for failed or cancelled turns.
        log_context: Extra context (request_id, user_id, chat_id) attached
            to every log record of this turn.
    """

    def __init__(
        self,
        provider: ModelProvider,
        tools: Optional[Dict[str, Tool]] = None,
        max_steps: Optional[int] = None,
        system_prompt: Optional[str] = None,
        on_finish: Optional[OnFinish] = None,
        log_context: Optional[Dict[str, Any]] = None,
    ):
        self.provider = provider
        self.tools = tools or {}
        self.max_steps = max_steps if max_steps is not None else settings.max_steps
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {self.max_steps}")
        self.system_prompt = system_prompt or build_system_prompt()
        self.on_finish = on_finish
        self.log_context = log_context or {}
        self.state = AgentState.THINKING
        self.result: Optional[AgentResult] = None
        self._started = False

    def _log_extra(self, **fields: Any) -> Dict[str, Any]:
        return get_log_context(**{**self.log_context, **fields})

    async def stream(self, messages: List[Message]) -> AsyncGenerator[AgentEvent, None]:
        """Run the turn, yielding events as they happen.

        The generator is lazy and can be consumed only once.

        Raises:
            ModelInvocationError: If a model call fails.
            ToolExecutionError: If a tool raises or is unknown.
        """
        if self._started:
            raise RuntimeError("AgentLoop.stream() can only be consumed once")
        self._started = True

        conversation = [m.model_copy(deep=True) for m in messages]
        response: List[Message] = []
        final_text = ""
        step = 0

        try:
            for step in range(1, self.max_steps + 1):
                forced = step == self.max_steps and bool(self.tools)
                allow_tools = bool(self.tools) and not forced
                self.state = AgentState.THINKING

                assistant = Message(role="assistant")
                text_chunks: List[str] = []
                reasoning_chunks: List[str] = []
                calls: List[ToolCallRequest] = []
                finish_reason: Optional[str] = None

                system = build_final_step_prompt(self.system_prompt) if forced else self.system_prompt
                try:
                    async for event in self.provider.stream_step(
                        conversation + response,
                        self.tools,
                        system=system,
                        allow_tools=allow_tools,
                    ):
                        if isinstance(event, TextDelta):
                            text_chunks.append(event.text)
                            yield event
                        elif isinstance(event, ReasoningDelta):
                            reasoning_chunks.append(event.reasoning)
                            yield event
                        elif isinstance(event, ToolCallRequest):
                            calls.append(event)
                        elif isinstance(event, StepEnd):
                            finish_reason = event.finish_reason
                except DeepSearchError:
                    raise
                except Exception as e:
                    raise ModelInvocationError(
                        f"Model call failed: {type(e).__name__}: {e}"
                    ) from e

                if calls and not allow_tools:
                    logger.warning(
                        f"Dropping {len(calls)} tool call(s) requested with tools disabled",
                        extra=self._log_extra(step=step),
                    )
                    calls = []

                text = "".join(text_chunks)
                if forced and not text.strip():
                    text = FALLBACK_ANSWER
                    yield TextDelta(text=text)

                if reasoning_chunks:
                    assistant.parts.append(ReasoningPart(reasoning="".join(reasoning_chunks)))
                if text:
                    assistant.content = text
                    assistant.parts.append(TextPart(text=text))
                invocations = [
                    ToolInvocationPart(
                        tool_call_id=call.id or f"call_{uuid.uuid4().hex[:12]}",
                        tool_name=call.name,
                        args=call.args,
                    )
                    for call in calls
                ]
                assistant.parts.extend(invocations)
                response.append(assistant)

                if not invocations:
                    yield StepFinished(step=step, finish_reason=finish_reason)
                    final_text = text
                    self.state = AgentState.BUDGET_EXHAUSTED if forced else AgentState.DONE
                    break

                self.state = AgentState.TOOL_CALL
                for invocation in invocations:
                    invocation.advance(ToolInvocationState.CALLED)
                    yield ToolCallStarted(
                        step=step,
                        tool_call_id=invocation.tool_call_id,
                        tool_name=invocation.tool_name,
                        args=invocation.args,
                    )

                results = await self._execute_tools(invocations, step)

                self.state = AgentState.TOOL_RESULT
                for invocation, result in zip(invocations, results):
                    invocation.advance(ToolInvocationState.COMPLETED, to_jsonable(result))
                    yield ToolCallCompleted(
                        step=step,
                        tool_call_id=invocation.tool_call_id,
                        tool_name=invocation.tool_name,
                        result=invocation.result,
                    )
                yield StepFinished(
                    step=step, finish_reason=finish_reason, tool_calls=len(invocations)
                )
        except asyncio.CancelledError:
            logger.info(f"Turn cancelled at step {step}", extra=self._log_extra(step=step))
            raise

        if self.state == AgentState.BUDGET_EXHAUSTED:
            logger.warning(
                f"Step budget of {self.max_steps} exhausted, returned forced answer",
                extra=self._log_extra(step=step),
            )
        else:
            logger.info(f"Turn finished after {step} step(s)", extra=self._log_extra(step=step))

        self.result = AgentResult(
            text=final_text, messages=response, steps=step, state=self.state
        )
        if self.on_finish is not None:
            await self.on_finish(response)

        yield TurnFinished(state=self.state, steps=step, text=final_text)

    async def run(self, messages: List[Message]) -> AgentResult:
        """Run the turn to completion and return its result."""
        async for _ in self.stream(messages):
            pass
        return self.result

    async def _execute_tools(
        self, invocations: List[ToolInvocationPart], step: int
    ) -> List[Any]:
        """Run all tool calls of a step concurrently.

        Results come back in the order of ``invocations``. If any call
        fails, the remaining calls are cancelled and the failure propagates.
        """
        tasks = [
            asyncio.ensure_future(self._run_tool(invocation, step))
            for invocation in invocations
        ]
        try:
            return await asyncio.gather(*tasks)
        except (Exception, asyncio.CancelledError):
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _run_tool(self, invocation: ToolInvocationPart, step: int) -> Any:
        tool = self.tools.get(invocation.tool_name)
        if tool is None:
            raise ToolExecutionError(invocation.tool_name, "Unknown tool")

        start = time.perf_counter()
        try:
            result = await tool.run(invocation.args)
        except ToolExecutionError as e:
            logger.error(
                f"Tool call failed: {e}",
                extra=self._log_extra(step=step, tool=tool.name),
            )
            raise
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            f"Tool {tool.name} completed in {duration_ms}ms",
            extra=self._log_extra(step=step, tool=tool.name, duration_ms=duration_ms),
        )
        return result


def create_agent(
    provider: Optional[ModelProvider] = None,
    tools: Optional[Dict[str, Tool]] = None,
    **kwargs: Any,
) -> AgentLoop:
    """Build an agent loop with the configured provider and the default tools."""
    return AgentLoop(
        provider=provider or create_provider(),
        tools=tools if tools is not None else build_tools(),
        **kwargs,
    )


async def ask_deep_search(messages: List[Message], **kwargs: Any) -> str:
    """Run one research turn without streaming and return the answer text."""
    result = await create_agent(**kwargs).run(messages)
    return result.text
