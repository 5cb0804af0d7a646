"""Event publication boundary.

The orchestrator depends only on `NotificationSink.publish(event)`. Transports
(WebSocket push, message brokers) live outside this package and subscribe
through one of the sinks below.

Contract:
    publish() is synchronous, fire-and-forget and must never block. A slow or
    absent consumer loses events; it never slows the orchestrator down.

Sinks:
    - NullNotificationSink: discards everything
    - QueueNotificationSink: fans events out to bounded asyncio.Queue
      subscribers, dropping for any subscriber whose queue is full

Logging Strategy:
    DEBUG - Subscribe/unsubscribe, published events
    WARN  - Dropped events (full subscriber queue)
"""
from __future__ import annotations

import asyncio
import logging
from typing import Final, Protocol

from .. import metrics
from ..models.events import StreamEvent

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIBER_QUEUE_SIZE: Final[int] = 256


class NotificationSink(Protocol):
    """Abstract publish channel for orchestrator events."""

    def publish(self, event: StreamEvent) -> None:
        ...


class NullNotificationSink:
    """Sink that drops every event."""

    def publish(self, event: StreamEvent) -> None:
        logger.debug(f"Event discarded: {event.event}")


class QueueNotificationSink:
    """Fan-out sink backed by one bounded queue per subscriber.

    Example:
        >>> sink = QueueNotificationSink()
        >>> queue = sink.subscribe()
        >>> # in a consumer task:
        >>> # event = await queue.get()
    """

    def __init__(self, max_queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: list[asyncio.Queue[StreamEvent]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[StreamEvent]:
        queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        logger.debug(f"Subscriber added (total: {len(self._subscribers)})")
        return queue

    def unsubscribe(self, queue: asyncio.Queue[StreamEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
            logger.debug(f"Subscriber removed (remaining: {len(self._subscribers)})")

    def publish(self, event: StreamEvent) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                metrics.events_dropped_total.labels(event=event.event).inc()
                logger.warning(f"Subscriber queue full, dropped {event.event}")
