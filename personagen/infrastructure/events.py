"""In-process fan-out of log events to live subscribers.

The hub knows nothing about jobs or subjects: whichever pipeline run is live
publishes into it and every subscriber sees the interleaved stream. Consumers
interested in one subject filter on ``LogEvent.subject``.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import threading

from personagen.core.schema import EventKind, LogEvent

logger = logging.getLogger(__name__)

CONNECTED_MESSAGE = "Connected to log stream"

_ids = itertools.count(1)


class Subscription:
    """Bounded per-subscriber buffer, consumed with ``async for``.

    Delivery uses ``put_nowait`` and must happen on the event loop thread that
    consumes the subscription.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self.id = next(_ids)
        self._queue: asyncio.Queue[LogEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def drain(self) -> list[LogEvent]:
        """Take every buffered event without waiting."""

        events: list[LogEvent] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return events
            if item is None:
                # Keep the end-of-stream marker for iterators.
                self._queue.put_nowait(None)
                return events
            events.append(item)

    def offer(self, event: LogEvent) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Make room for the end-of-stream marker; the subscriber is being dropped anyway.
        while True:
            try:
                self._queue.put_nowait(None)
                break
            except asyncio.QueueFull:
                self._queue.get_nowait()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> LogEvent:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, closed={self._closed})"


class LogBroadcastHub:
    """Registry of subscriptions with non-blocking fan-out."""

    def __init__(self, queue_size: int = 256) -> None:
        self.queue_size = queue_size
        self._lock = threading.Lock()
        self._subscribers: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self.queue_size)
        subscription.offer(LogEvent(kind="info", message=CONNECTED_MESSAGE))
        with self._lock:
            self._subscribers.add(subscription)
        logger.debug("subscriber %s connected", subscription.id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            removed = subscription in self._subscribers
            self._subscribers.discard(subscription)
        subscription.close()
        if removed:
            logger.debug("subscriber %s disconnected", subscription.id)

    def publish(self, event: LogEvent) -> int:
        """Deliver ``event`` to every subscriber; returns the number reached."""

        with self._lock:
            targets = list(self._subscribers)

        delivered = 0
        for subscription in targets:
            if subscription.offer(event):
                delivered += 1
                continue
            logger.warning("dropping subscriber %s: buffer full or closed", subscription.id)
            self.unsubscribe(subscription)
        return delivered

    def emit(self, kind: EventKind, message: str, *, subject: str | None = None) -> int:
        return self.publish(LogEvent(kind=kind, message=message, subject=subject))

    def shutdown(self) -> None:
        with self._lock:
            targets = list(self._subscribers)
            self._subscribers.clear()
        for subscription in targets:
            subscription.close()
