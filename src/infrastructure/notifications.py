"""
Notification sink -- the boundary between the booking core and delivery.

The core never talks to email / SMS / sockets directly.  After a state
change is committed, its ``DomainEvent`` list is handed to a sink:

* ``RedisNotificationSink`` publishes each event as JSON on
  ``notifications:user-<id>`` for every recipient and on
  ``notifications:ride-<id>``; the Socket.IO gateway and the
  email / SMS workers subscribe to those channels.
* ``LoggingNotificationSink`` just logs (used when notifications are
  disabled).

``dispatch_events`` is best-effort: a failing sink is logged and never
propagates, so a down provider cannot fail or roll back a booking.
"""

from __future__ import annotations

import json
import logging
from typing import Iterable, Protocol

import redis.asyncio as aioredis

from src.domain.events import DomainEvent

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...


class RedisNotificationSink:
    def __init__(self, client: aioredis.Redis, prefix: str = "notifications"):
        self.redis = client
        self.prefix = prefix

    def channels(self, event: DomainEvent) -> list[str]:
        channels = [f"{self.prefix}:user-{uid}" for uid in event.recipients]
        if event.ride_id is not None:
            channels.append(f"{self.prefix}:ride-{event.ride_id}")
        return channels

    async def publish(self, event: DomainEvent) -> None:
        message = json.dumps(event.to_message(), default=str)
        for channel in self.channels(event):
            await self.redis.publish(channel, message)


class LoggingNotificationSink:
    async def publish(self, event: DomainEvent) -> None:
        logger.info(
            "Notification %s -> users %s (booking=%s ride=%s)",
            event.name,
            list(event.recipients),
            event.booking_id,
            event.ride_id,
        )


async def dispatch_events(
    sink: NotificationSink, events: Iterable[DomainEvent]
) -> int:
    """Publish *events* in order; returns how many were delivered."""
    delivered = 0
    for event in events:
        try:
            await sink.publish(event)
            delivered += 1
        except Exception:
            logger.exception(
                "Notification dispatch failed for %s (booking=%s ride=%s)",
                event.name,
                event.booking_id,
                event.ride_id,
            )
    return delivered
