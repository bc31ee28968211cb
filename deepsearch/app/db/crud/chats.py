"""Chat transcript CRUD operations."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deepsearch.app.db.models import Chat, ChatMessage
from deepsearch.app.exceptions import ChatOwnershipError
from deepsearch.app.services.transcript import Message


async def get_chat(session: AsyncSession, chat_id: str, user_id: str) -> Chat | None:
    """Get a chat with its messages, only if it belongs to ``user_id``."""
    result = await session.execute(
        select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def upsert_chat(
    session: AsyncSession,
    user_id: str,
    chat_id: str,
    title: str | None,
    messages: List[Message],
    auto_commit: bool = True,
) -> Chat:
    """Create a chat or replace the messages of an existing one.

    The stored message list is replaced as a whole, so the chat always holds
    exactly ``messages`` in order.

    Raises:
        ChatOwnershipError: If the chat exists and belongs to another user.
    """
    rows = [
        ChatMessage(
            message_id=message.id,
            position=position,
            role=message.role,
            content=message.content,
            parts=[part.model_dump(mode="json") for part in message.parts],
        )
        for position, message in enumerate(messages)
    ]

    result = await session.execute(select(Chat).where(Chat.id == chat_id))
    chat = result.scalar_one_or_none()

    if chat is None:
        chat = Chat(id=chat_id, user_id=user_id, title=title, messages=rows)
        session.add(chat)
    elif chat.user_id != user_id:
        raise ChatOwnershipError(chat_id)
    else:
        chat.title = title
        chat.updated_at = datetime.now(timezone.utc)
        # Orphaned rows are deleted on flush
        chat.messages = rows

    if auto_commit:
        await session.commit()
    else:
        await session.flush()
    return chat


def to_messages(chat: Chat) -> List[Message]:
    """Convert stored chat rows back into transcript messages."""
    return [
        Message(id=row.message_id, role=row.role, content=row.content, parts=row.parts or [])
        for row in chat.messages
    ]
