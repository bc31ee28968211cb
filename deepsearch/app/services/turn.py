"""Chat turn coordination.

One turn runs through a fixed sequence:

1. Daily admission precheck (skipped for admins). Over the limit the turn
   fails with ``AdmissionDeniedError`` before anything else happens.
2. The request is recorded in the daily request log.
3. The turn waits for the global rate limiter to admit it.
4. A new chat is saved with its title before streaming starts.
5. The agent loop streams the answer.
6. On a clean finish the full transcript is saved. Persistence failures are
   logged and never fail the turn.
"""

import functools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Union

from deepsearch.app.core.config import settings
from deepsearch.app.core.logging import get_log_context, get_logger
from deepsearch.app.db.async_session import get_async_session
from deepsearch.app.db.crud import get_chat, get_request_count_today, insert_request, upsert_chat
from deepsearch.app.exceptions import AdmissionDeniedError
from deepsearch.app.services.agent import AgentEvent, AgentLoop, create_agent
from deepsearch.app.services.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    default_rate_limit_config,
    get_rate_limiter,
)
from deepsearch.app.services.transcript import Message, first_user_text

logger = get_logger(__name__)

NEW_CHAT_TITLE = "New Chat"
UNTITLED_CHAT_TITLE = "Chat With AI"
MAX_TITLE_LENGTH = 100


def derive_title(messages: List[Message]) -> str:
    """Title a new chat after its first user message."""
    text = first_user_text(messages)
    return (text or NEW_CHAT_TITLE)[:MAX_TITLE_LENGTH]


class TurnRepository(ABC):
    """Persistence and admission collaborators of a chat turn."""

    @abstractmethod
    async def get_request_count_today(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def insert_request(self, user_id: str) -> None:
        pass

    @abstractmethod
    async def get_chat_title(self, chat_id: str, user_id: str) -> tuple[bool, Optional[str]]:
        """Return ``(exists, title)`` for a chat owned by ``user_id``."""
        pass

    @abstractmethod
    async def save_chat(
        self, user_id: str, chat_id: str, title: str, messages: List[Message]
    ) -> None:
        pass


class SqlTurnRepository(TurnRepository):
    """Repository backed by the SQLAlchemy async session."""

    async def get_request_count_today(self, user_id: str) -> int:
        async with get_async_session() as session:
            return await get_request_count_today(session, user_id)

    async def insert_request(self, user_id: str) -> None:
        async with get_async_session() as session:
            await insert_request(session, user_id)

    async def get_chat_title(self, chat_id: str, user_id: str) -> tuple[bool, Optional[str]]:
        async with get_async_session() as session:
            chat = await get_chat(session, chat_id, user_id)
            if chat is None:
                return False, None
            return True, chat.title

    async def save_chat(
        self, user_id: str, chat_id: str, title: str, messages: List[Message]
    ) -> None:
        async with get_async_session() as session:
            await upsert_chat(session, user_id, chat_id, title, messages)


@dataclass
class TurnRequest:
    user_id: str
    chat_id: str
    messages: List[Message]
    is_new_chat: bool = False
    is_admin: bool = False
    request_id: Optional[str] = None


@dataclass
class NewChatCreated:
    chat_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "new-chat-created", "chatId": self.chat_id}


TurnEvent = Union[NewChatCreated, AgentEvent]


@dataclass
class Turn:
    """An admitted turn, ready to stream."""

    request: TurnRequest
    title: str
    agent: Optional[AgentLoop] = field(default=None, repr=False)

    async def stream(self) -> AsyncGenerator[TurnEvent, None]:
        if self.request.is_new_chat:
            yield NewChatCreated(chat_id=self.request.chat_id)
        async for event in self.agent.stream(self.request.messages):
            yield event


class TurnCoordinator:
    """Admits chat turns and wires the agent loop to persistence.

    Args:
        repository: Admission and persistence adapter. Defaults to SQL.
        rate_limiter: Global rate limiter. Defaults to the shared limiter.
        rate_limit_config: Defaults to the settings-driven global config.
        agent_factory: Builds the agent loop; receives ``on_finish`` and
            ``log_context`` keyword arguments.
        daily_limit: Requests per day for non-admin users.
    """

    def __init__(
        self,
        repository: Optional[TurnRepository] = None,
        rate_limiter: Optional[RateLimiter] = None,
        rate_limit_config: Optional[RateLimitConfig] = None,
        agent_factory: Callable[..., AgentLoop] = create_agent,
        daily_limit: Optional[int] = None,
    ):
        self.repository = repository or SqlTurnRepository()
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.rate_limit_config = rate_limit_config or default_rate_limit_config()
        self.agent_factory = agent_factory
        self.daily_limit = daily_limit if daily_limit is not None else settings.daily_request_limit

    async def admit(self, request: TurnRequest) -> None:
        """Run the admission precheck, record the request and wait for the rate limiter.

        Raises:
            AdmissionDeniedError: If a non-admin user is over the daily limit.
        """
        log_extra = get_log_context(
            request_id=request.request_id, user_id=request.user_id, chat_id=request.chat_id
        )
        if not request.is_admin:
            count = await self.repository.get_request_count_today(request.user_id)
            if count >= self.daily_limit:
                logger.warning(
                    f"Daily request limit reached: {count}/{self.daily_limit}",
                    extra=log_extra,
                )
                raise AdmissionDeniedError(request.user_id, count, self.daily_limit)

        await self.repository.insert_request(request.user_id)
        await self.rate_limiter.wait_for_admission(self.rate_limit_config)
        logger.info("Turn admitted", extra=log_extra)

    async def begin(self, request: TurnRequest) -> Turn:
        """Admit the turn and prepare its agent loop.

        A new chat is saved before this returns, so it exists even if the
        client disconnects before the answer finishes.
        """
        await self.admit(request)

        title = NEW_CHAT_TITLE
        if request.is_new_chat:
            title = derive_title(request.messages)
            await self.repository.save_chat(
                request.user_id, request.chat_id, title, request.messages
            )

        turn = Turn(request=request, title=title)
        turn.agent = self.agent_factory(
            on_finish=functools.partial(self._save_transcript, turn),
            log_context=get_log_context(
                request_id=request.request_id,
                user_id=request.user_id,
                chat_id=request.chat_id,
            ),
        )
        return turn

    async def _save_transcript(self, turn: Turn, response_messages: List[Message]) -> None:
        request = turn.request
        log_extra = get_log_context(
            request_id=request.request_id, user_id=request.user_id, chat_id=request.chat_id
        )
        try:
            if not request.is_new_chat:
                exists, stored_title = await self.repository.get_chat_title(
                    request.chat_id, request.user_id
                )
                if exists:
                    turn.title = stored_title or UNTITLED_CHAT_TITLE

            await self.repository.save_chat(
                request.user_id,
                request.chat_id,
                turn.title,
                list(request.messages) + list(response_messages),
            )
        except Exception as e:
            logger.error(f"Failed to save chat: {e}", exc_info=True, extra=log_extra)


# Global coordinator instance
_turn_coordinator: Optional[TurnCoordinator] = None


def get_turn_coordinator() -> TurnCoordinator:
    """Get or create the global turn coordinator."""
    global _turn_coordinator
    if _turn_coordinator is None:
        _turn_coordinator = TurnCoordinator()
    return _turn_coordinator


def reset_turn_coordinator() -> None:
    """Reset the global turn coordinator (for tests)."""
    global _turn_coordinator
    _turn_coordinator = None
