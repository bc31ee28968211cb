"""Shared fixtures for the test suite."""

from unittest.mock import AsyncMock

import pytest

from deepsearch.app.core.store import InMemoryStore, reset_store
from deepsearch.app.providers.mock import MockProvider, scripted
from deepsearch.app.services.agent import AgentLoop
from deepsearch.app.services.rate_limiter import RateLimitConfig, reset_rate_limiter
from deepsearch.app.services.turn import TurnCoordinator, TurnRepository, reset_turn_coordinator


class FakeClock:
    """Controllable clock in seconds, for store TTL tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global singletons between tests."""
    reset_store()
    reset_rate_limiter()
    reset_turn_coordinator()
    yield
    reset_store()
    reset_rate_limiter()
    reset_turn_coordinator()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryStore(clock=clock)


class FakeRepository(TurnRepository):
    """In-memory turn repository recording every call."""

    def __init__(self, count_today=0):
        self.count_today = count_today
        self.requests = []
        self.chats = {}
        self.saves = []
        self.fail_saves = False

    async def get_request_count_today(self, user_id):
        return self.count_today

    async def insert_request(self, user_id):
        self.requests.append(user_id)

    async def get_chat_title(self, chat_id, user_id):
        chat = self.chats.get(chat_id)
        if chat is None or chat["user_id"] != user_id:
            return False, None
        return True, chat["title"]

    async def save_chat(self, user_id, chat_id, title, messages):
        if self.fail_saves:
            raise RuntimeError("database is locked")
        self.saves.append((chat_id, title, list(messages)))
        self.chats[chat_id] = {"user_id": user_id, "title": title, "messages": list(messages)}


class AgentFactory:
    """Builds agent loops answering with a scripted provider."""

    def __init__(self, responder=None):
        self.responder = responder or scripted(["The answer."])
        self.created = []

    def __call__(self, **kwargs):
        agent = AgentLoop(provider=MockProvider(self.responder), **kwargs)
        self.created.append(agent)
        return agent


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def rate_limiter():
    return AsyncMock()


@pytest.fixture
def agent_factory():
    return AgentFactory()


@pytest.fixture
def coordinator(repository, rate_limiter, agent_factory):
    return TurnCoordinator(
        repository=repository,
        rate_limiter=rate_limiter,
        rate_limit_config=RateLimitConfig(max_requests=1, window_ms=5000, key_prefix="test"),
        agent_factory=agent_factory,
        daily_limit=2,
    )
