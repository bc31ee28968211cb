"""Chat API endpoint.

``POST /api/chat`` admits the turn (daily limit, global rate limit), then
streams the agent's events as server-sent events: one ``data: <json>`` line
per event, terminated by ``data: [DONE]``. Admission failures are returned
as ordinary HTTP errors before the stream starts. Failures during the
stream are logged and reported to the client as a single generic error
event.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from deepsearch.app.core.logging import get_log_context, get_logger
from deepsearch.app.exceptions import AuthenticationError
from deepsearch.app.middleware.request_id import get_request_id
from deepsearch.app.services.transcript import Message
from deepsearch.app.services.turn import (
    Turn,
    TurnCoordinator,
    TurnRequest,
    get_turn_coordinator,
)

router = APIRouter()
logger = get_logger(__name__)

STREAM_ERROR_MESSAGE = "Oops, an error occurred!"


class ChatRequest(BaseModel):
    """Request body of the chat endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    messages: list[Message] = Field(..., min_length=1)
    chat_id: str = Field(..., alias="chatId", min_length=1)
    is_new_chat: bool = Field(default=False, alias="isNewChat")

    @field_validator("messages")
    @classmethod
    def validate_roles(cls, v: list[Message]) -> list[Message]:
        """Clients send user and assistant messages only; tool results live in assistant parts."""
        if any(m.role == "tool" for m in v):
            raise ValueError("tool messages are not accepted")
        return v


@dataclass
class CurrentUser:
    user_id: str
    is_admin: bool = False


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_admin: Optional[str] = Header(default=None),
) -> CurrentUser:
    """Read the user identity set by the upstream auth proxy.

    Raises:
        AuthenticationError: If no user id is present.
    """
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError()
    is_admin = (x_user_admin or "").strip().lower() in ("1", "true", "yes")
    return CurrentUser(user_id=x_user_id.strip(), is_admin=is_admin)


def format_sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False, default=str)}\n\n"


async def stream_turn_events(turn: Turn, request_id: str) -> AsyncGenerator[str, None]:
    """Serialize turn events into an SSE stream."""
    log_extra = get_log_context(
        request_id=request_id,
        user_id=turn.request.user_id,
        chat_id=turn.request.chat_id,
    )
    try:
        async for event in turn.stream():
            yield format_sse(event.to_dict())
    except asyncio.CancelledError:
        logger.info("Client disconnected, turn cancelled", extra=log_extra)
        raise
    except Exception as e:
        logger.exception(f"Chat turn failed: {e}", extra=log_extra)
        yield format_sse({"type": "error", "message": STREAM_ERROR_MESSAGE})
    yield "data: [DONE]\n\n"


@router.post("/api/chat", response_model=None)
async def chat(
    request: Request,
    body: ChatRequest,
    user: CurrentUser = Depends(get_current_user),
    coordinator: TurnCoordinator = Depends(get_turn_coordinator),
) -> StreamingResponse:
    """Run one research turn and stream its events.

    Raises:
        AdmissionDeniedError: If the user is over the daily request limit (429).
        AuthenticationError: If the request carries no user (401).
    """
    request_id = get_request_id(request)

    turn = await coordinator.begin(
        TurnRequest(
            user_id=user.user_id,
            chat_id=body.chat_id,
            messages=body.messages,
            is_new_chat=body.is_new_chat,
            is_admin=user.is_admin,
            request_id=request_id,
        )
    )

    return StreamingResponse(
        stream_turn_events(turn, request_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
