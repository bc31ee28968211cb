"""Tests for the bounded tool-calling agent loop."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import respx
from httpx import Response
from pydantic import BaseModel

from deepsearch.app.core.store import InMemoryStore
from deepsearch.app.exceptions import ModelInvocationError, ToolExecutionError
from deepsearch.app.providers.base import ModelProvider, StepEnd, TextDelta
from deepsearch.app.providers.mock import MockProvider, scripted, text_events, tool_call
from deepsearch.app.services.agent import (
    AgentLoop,
    AgentState,
    StepFinished,
    ToolCallCompleted,
    ToolCallStarted,
    TurnFinished,
    ask_deep_search,
)
from deepsearch.app.services.prompts import FALLBACK_ANSWER, FINAL_ANSWER_INSTRUCTION
from deepsearch.app.services.transcript import Message, ToolInvocationState
from deepsearch.app.tools import PageScraper, SerperClient, build_tools
from deepsearch.app.tools.base import Tool
from deepsearch.app.tools.retry import RetryPolicy


class EchoParams(BaseModel):
    text: str


class DelayParams(BaseModel):
    label: str
    delay: float = 0.0


class NoParams(BaseModel):
    pass


def make_tool(name, parameters, execute):
    return Tool(name=name, description=name, parameters=parameters, execute=execute)


async def echo(args: EchoParams) -> dict:
    return {"echo": args.text}


def user(text):
    return [Message(role="user", content=text)]


async def collect(agent, messages):
    return [event async for event in agent.stream(messages)]


def text_of(events):
    return "".join(e.text for e in events if isinstance(e, TextDelta))


class TestAgentLoop:
    """Tests for AgentLoop.stream and run."""

    @pytest.mark.asyncio
    async def test_direct_answer(self):
        agent = AgentLoop(
            provider=MockProvider(scripted(["Paris is the capital of France."])),
            tools={"echo": make_tool("echo", EchoParams, echo)},
            system_prompt="sys",
        )
        events = await collect(agent, user("Capital of France?"))

        assert text_of(events) == "Paris is the capital of France."
        assert isinstance(events[-2], StepFinished)
        assert events[-1] == TurnFinished(
            state=AgentState.DONE, steps=1, text="Paris is the capital of France."
        )
        assert agent.result.messages[0].role == "assistant"
        assert agent.result.messages[0].content == "Paris is the capital of France."

    @pytest.mark.asyncio
    async def test_tool_round_trip(self):
        provider = MockProvider(scripted([tool_call("echo", text="hi"), "Done."]))
        agent = AgentLoop(provider=provider, tools={"echo": make_tool("echo", EchoParams, echo)})

        events = await collect(agent, user("Say hi"))

        started = [e for e in events if isinstance(e, ToolCallStarted)]
        completed = [e for e in events if isinstance(e, ToolCallCompleted)]
        assert started[0].tool_name == "echo"
        assert started[0].args == {"text": "hi"}
        assert completed[0].result == {"echo": "hi"}
        assert completed[0].tool_call_id == started[0].tool_call_id
        assert events[-1].steps == 2
        assert events[-1].state == AgentState.DONE

        invocation = agent.result.messages[0].tool_invocations()[0]
        assert invocation.state == ToolInvocationState.COMPLETED
        assert invocation.result == {"echo": "hi"}

        second_call_messages = provider.calls[1].messages
        assert second_call_messages[-1].tool_invocations()[0].result == {"echo": "hi"}

    @pytest.mark.asyncio
    async def test_last_step_forces_answer(self):
        """With max_steps=3 the third call has tools disabled and ends the turn."""
        def respond(messages, tools, allow_tools):
            if allow_tools:
                return [tool_call("echo", text="again")]
            return text_events("Here is my final answer.")

        provider = MockProvider(respond)
        agent = AgentLoop(
            provider=provider,
            tools={"echo": make_tool("echo", EchoParams, echo)},
            max_steps=3,
            system_prompt="sys",
        )
        result = await agent.run(user("Keep searching"))

        assert len(provider.calls) == 3
        assert [c.allow_tools for c in provider.calls] == [True, True, False]
        assert FINAL_ANSWER_INSTRUCTION in provider.calls[2].system
        assert FINAL_ANSWER_INSTRUCTION not in provider.calls[0].system
        assert result.state == AgentState.BUDGET_EXHAUSTED
        assert result.steps == 3
        assert result.text == "Here is my final answer."

    @pytest.mark.asyncio
    async def test_forced_step_ignores_tool_calls_and_falls_back(self):
        provider = MockProvider(scripted([tool_call("echo", text="again")]))
        execute = AsyncMock(side_effect=echo)
        agent = AgentLoop(
            provider=provider,
            tools={"echo": make_tool("echo", EchoParams, execute)},
            max_steps=3,
        )
        events = await collect(agent, user("Loop forever"))

        assert len(provider.calls) == 3
        assert execute.await_count == 2
        assert text_of(events) == FALLBACK_ANSWER
        assert events[-1].state == AgentState.BUDGET_EXHAUSTED
        assert agent.result.messages[-1].tool_invocations() == []

    @pytest.mark.asyncio
    async def test_single_step_budget(self):
        provider = MockProvider(scripted(["Quick answer"]))
        agent = AgentLoop(
            provider=provider,
            tools={"echo": make_tool("echo", EchoParams, echo)},
            max_steps=1,
        )
        result = await agent.run(user("Hi"))
        assert provider.calls[0].allow_tools is False
        assert result.text == "Quick answer"

    @pytest.mark.asyncio
    async def test_without_tools_finishes_done(self):
        provider = MockProvider(scripted(["Plain answer"]))
        agent = AgentLoop(provider=provider, max_steps=1)
        result = await agent.run(user("Hi"))
        assert result.state == AgentState.DONE
        assert provider.calls[0].tool_names == []

    @pytest.mark.asyncio
    async def test_parallel_tool_results_keep_request_order(self):
        running = 0
        peak = 0
        finished = []

        async def delayed(args: DelayParams) -> str:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(args.delay)
            running -= 1
            finished.append(args.label)
            return args.label

        provider = MockProvider(scripted([
            [
                tool_call("delayed", label="slow", delay=0.05),
                tool_call("delayed", label="fast", delay=0.0),
                StepEnd("tool_calls"),
            ],
            "Done.",
        ]))
        agent = AgentLoop(provider=provider, tools={"delayed": make_tool("delayed", DelayParams, delayed)})
        events = await collect(agent, user("Go"))

        completed = [e.result for e in events if isinstance(e, ToolCallCompleted)]
        assert completed == ["slow", "fast"]
        assert finished == ["fast", "slow"]
        assert peak == 2
        labels = [p.result for p in agent.result.messages[0].tool_invocations()]
        assert labels == ["slow", "fast"]

    @pytest.mark.asyncio
    async def test_tool_failure_cancels_siblings_and_fails_turn(self):
        sibling_started = asyncio.Event()
        sibling_cancelled = asyncio.Event()

        async def wait_forever(args: NoParams) -> None:
            sibling_started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                sibling_cancelled.set()
                raise

        async def fail(args: NoParams) -> None:
            await sibling_started.wait()
            raise RuntimeError("upstream exploded")

        on_finish = AsyncMock()
        provider = MockProvider(scripted([[tool_call("fail"), tool_call("wait")], "unreachable"]))
        agent = AgentLoop(
            provider=provider,
            tools={
                "fail": make_tool("fail", NoParams, fail),
                "wait": make_tool("wait", NoParams, wait_forever),
            },
            on_finish=on_finish,
        )

        with pytest.raises(ToolExecutionError, match="upstream exploded"):
            await agent.run(user("Go"))

        assert sibling_cancelled.is_set()
        assert len(provider.calls) == 1
        on_finish.assert_not_awaited()
        assert agent.result is None

    @pytest.mark.asyncio
    async def test_unknown_tool_fails_turn(self):
        provider = MockProvider(scripted([tool_call("missing")]))
        agent = AgentLoop(provider=provider, tools={"echo": make_tool("echo", EchoParams, echo)})

        with pytest.raises(ToolExecutionError, match="Unknown tool"):
            await agent.run(user("Go"))

    @pytest.mark.asyncio
    async def test_invalid_tool_arguments_fail_turn(self):
        provider = MockProvider(scripted([tool_call("echo", wrong="x")]))
        agent = AgentLoop(provider=provider, tools={"echo": make_tool("echo", EchoParams, echo)})

        with pytest.raises(ToolExecutionError):
            await agent.run(user("Go"))

    @pytest.mark.asyncio
    async def test_provider_error_is_wrapped(self):
        class BrokenProvider(ModelProvider):
            async def stream_step(self, messages, tools, system=None, allow_tools=True):
                raise ConnectionError("socket closed")
                yield  # pragma: no cover

        agent = AgentLoop(provider=BrokenProvider(), max_steps=2)
        with pytest.raises(ModelInvocationError, match="socket closed"):
            await agent.run(user("Hi"))

    @pytest.mark.asyncio
    async def test_cancellation_skips_on_finish(self):
        started = asyncio.Event()

        async def block(args: NoParams) -> None:
            started.set()
            await asyncio.Event().wait()

        on_finish = AsyncMock()
        agent = AgentLoop(
            provider=MockProvider(scripted([tool_call("block"), "never"])),
            tools={"block": make_tool("block", NoParams, block)},
            on_finish=on_finish,
        )
        task = asyncio.create_task(agent.run(user("Go")))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        on_finish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_on_finish_receives_response_messages(self):
        on_finish = AsyncMock()
        agent = AgentLoop(
            provider=MockProvider(scripted([tool_call("echo", text="x"), "Answer"])),
            tools={"echo": make_tool("echo", EchoParams, echo)},
            on_finish=on_finish,
        )
        await agent.run(user("Hi"))

        on_finish.assert_awaited_once()
        response = on_finish.await_args.args[0]
        assert [m.role for m in response] == ["assistant", "assistant"]
        assert response[-1].content == "Answer"

    @pytest.mark.asyncio
    async def test_input_messages_are_not_mutated(self):
        messages = user("Hi")
        agent = AgentLoop(
            provider=MockProvider(scripted([tool_call("echo", text="x"), "Answer"])),
            tools={"echo": make_tool("echo", EchoParams, echo)},
        )
        await agent.run(messages)
        assert len(messages) == 1

    @pytest.mark.asyncio
    async def test_stream_consumed_once(self):
        agent = AgentLoop(provider=MockProvider(scripted(["Hi"])))
        await agent.run(user("Hi"))
        with pytest.raises(RuntimeError):
            await agent.run(user("Hi"))

    def test_invalid_max_steps(self):
        with pytest.raises(ValueError):
            AgentLoop(provider=MockProvider(), max_steps=0)

    @pytest.mark.asyncio
    async def test_ask_deep_search(self):
        answer = await ask_deep_search(
            user("Hi"), provider=MockProvider(scripted(["Short answer"])), tools={}
        )
        assert answer == "Short answer"


class TestResearchTurn:
    """A full research turn over mocked Serper and web pages."""

    @pytest.mark.asyncio
    async def test_answer_cites_scraped_page(self):
        tools = build_tools(
            search_client=SerperClient(api_key="serper-key", base_url="https://serper.test"),
            scraper=PageScraper(retry_policy=RetryPolicy(base_delay=0)),
            store=InMemoryStore(),
        )
        provider = MockProvider()
        agent = AgentLoop(provider=provider, tools=tools)

        with respx.mock(assert_all_called=False) as router:
            router.post("https://serper.test/search").mock(
                return_value=Response(200, json={"organic": [
                    {"title": "Solar", "link": "https://solar.example/guide", "snippet": "Guide"},
                    {"title": "Broken", "link": "https://broken.example/page"},
                ]})
            )
            router.get("https://solar.example/robots.txt").mock(return_value=Response(404))
            router.get("https://broken.example/robots.txt").mock(return_value=Response(404))
            router.get("https://solar.example/guide").mock(
                return_value=Response(200, html="<html><body><article>Solar panels work.</article></body></html>")
            )
            router.get("https://broken.example/page").mock(return_value=Response(500))

            events = await collect(agent, user("how do solar panels work"))

        text = text_of(events)
        assert "[source](https://solar.example/guide)" in text
        assert "broken.example" not in text
        assert events[-1].state == AgentState.DONE
        assert events[-1].steps == 3

        tool_names = [e.tool_name for e in events if isinstance(e, ToolCallCompleted)]
        assert tool_names == ["searchWeb", "scrapePages"]
        scrape = [e for e in events if isinstance(e, ToolCallCompleted)][1].result
        assert [r["success"] for r in scrape["results"]] == [True, False]
