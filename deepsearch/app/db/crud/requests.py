"""Daily request log CRUD operations."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from deepsearch.app.db.models import UserRequest


def _start_of_day(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


async def get_request_count_today(
    session: AsyncSession,
    user_id: str,
    now: datetime | None = None,
) -> int:
    """Count the requests a user made since midnight (UTC).

    Args:
        session: Database session
        user_id: The user ID
        now: Current time, for tests. Defaults to the current UTC time.

    Returns:
        Number of requests recorded today
    """
    result = await session.execute(
        select(func.count(UserRequest.id)).where(
            UserRequest.user_id == user_id,
            UserRequest.created_at >= _start_of_day(now),
        )
    )
    return result.scalar_one()


async def insert_request(
    session: AsyncSession,
    user_id: str,
    now: datetime | None = None,
    auto_commit: bool = True,
) -> UserRequest:
    """Record one request for the user."""
    request = UserRequest(user_id=user_id, created_at=now or datetime.now(timezone.utc))
    session.add(request)
    if auto_commit:
        await session.commit()
    return request
