"""FastAPI dependency injection helpers."""

from typing import Iterable

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.events import DomainEvent
from src.infrastructure.database import async_session_factory
from src.infrastructure.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    RedisNotificationSink,
    dispatch_events,
)
from src.infrastructure.redis_client import get_redis


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_actor_id(x_user_id: int = Header(..., alias="X-User-Id")) -> int:
    """Authenticated user id, injected by the identity gateway."""
    return x_user_id


async def get_notification_sink() -> NotificationSink:
    if not settings.notifications_enabled:
        return LoggingNotificationSink()
    return RedisNotificationSink(await get_redis())


async def commit_and_notify(
    db: AsyncSession, sink: NotificationSink, events: Iterable[DomainEvent]
) -> None:
    """Commit the unit of work, then hand its events to the sink.

    Events never leave before the state they describe is durable.
    """
    await db.commit()
    await dispatch_events(sink, events)
