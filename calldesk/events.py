"""Push event feed for presentation subscribers."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .models import CallEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[CallEvent], Awaitable[None]]


class Subscription:
    """
    One subscriber's delivery queue.

    Events are handed to the callback one at a time; a new delivery starts
    only after the previous one returned. When the queue is full the oldest
    undelivered event is dropped.
    """

    def __init__(self, callback: EventCallback, maxsize: int = 100):
        self._callback = callback
        self._queue: asyncio.Queue[CallEvent] = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self.dropped_count = 0

    def start(self) -> None:
        self._task = asyncio.create_task(self._deliver())

    def offer(self, event: CallEvent) -> None:
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._queue.task_done()
                self.dropped_count += 1
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(event)

    async def _deliver(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._callback(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Subscriber failed to handle {event.type} event")
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been delivered."""
        await self._queue.join()

    def close(self) -> None:
        if self._task:
            self._task.cancel()
            self._task = None


class EventBus:
    """Fan-out of call events. No replay: late subscribers read snapshots."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscriptions: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: EventCallback) -> Subscription:
        """Register a callback. Must be called from a running event loop."""
        subscription = Subscription(callback, maxsize=self.queue_size)
        subscription.start()
        self._subscriptions.append(subscription)
        logger.debug(f"Subscriber added ({len(self._subscriptions)} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        logger.debug(f"Subscriber removed ({len(self._subscriptions)} total)")

    def publish(self, event_type: str, **data: Any) -> CallEvent:
        """Queue an event for every subscriber without waiting for delivery."""
        event = CallEvent(type=event_type, data=data)
        for subscription in list(self._subscriptions):
            subscription.offer(event)
        return event

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
