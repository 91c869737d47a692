"""Publish/subscribe channel for indexing status and embedding requests.

``EventBus`` is the in-process transport: every subscriber owns an
``asyncio.Queue`` and ``publish`` fans an event out to all queues of the
topic. A transport failure is delivered to subscribers as an exception from
their iterator; ``listen`` handles that by waiting a fixed delay and
subscribing again.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from ..config.defaults import DEFAULT_SUBSCRIPTION_RETRY_SECONDS
from .jobs import JobStatus

INDEXING_STATUS_TOPIC = "indexing-status"
NOTE_NEEDS_EMBEDDING_TOPIC = "note-needs-embedding"
NOTE_EMBEDDING_RESULT_TOPIC = "note-embedding-result"


class IndexingStatusEvent(BaseModel):
    """Snapshot of the corpus job, published on every transition."""

    corpus: str
    status: JobStatus
    total: int = 0
    processed: int = 0
    error_count: int = 0
    message: str | None = None


class NoteEmbeddingRequest(BaseModel):
    """Ask the context holding the embedding backend to embed one note."""

    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    note_id: str
    path: str
    title: str = ""


class NoteEmbeddingResponse(BaseModel):
    """Answer to a ``NoteEmbeddingRequest``; ``vector`` is ``None`` on failure."""

    request_id: str
    note_id: str
    vector: list[float] | None = None
    error: str | None = None


_CLOSED = object()


class Subscription:
    """Async iterator over the events of one topic."""

    def __init__(self, bus: "EventBus", topic: str) -> None:
        self.bus = bus
        self.topic = topic
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _deliver(self, item: Any) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self.close()
            raise item
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.bus._remove(self)
        self._queue.put_nowait(_CLOSED)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class EventBus:
    """In-process topic-based event bus."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._closed = False

    def subscribe(self, topic: str) -> Subscription:
        """Subscribe to a topic; events published from now on are delivered."""
        subscription = Subscription(self, topic)
        if self._closed:
            subscription.close()
            return subscription
        self._subscriptions.setdefault(topic, []).append(subscription)
        logger.debug(f"New subscriber on {topic}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.topic, [])
        if subscription in subscribers:
            subscribers.remove(subscription)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, []))

    def publish(self, topic: str, event: Any) -> int:
        """Deliver an event to every current subscriber of ``topic``.

        Returns:
            Number of subscribers the event was delivered to
        """
        subscribers = list(self._subscriptions.get(topic, []))
        for subscription in subscribers:
            subscription._deliver(event)
        return len(subscribers)

    def disconnect(self, topic: str, error: Exception) -> None:
        """Fail every subscription of ``topic`` (transport dropped)."""
        for subscription in list(self._subscriptions.get(topic, [])):
            subscription._deliver(error)
            self._remove(subscription)

    def close(self) -> None:
        """End every subscription; ``listen`` loops return."""
        self._closed = True
        for subscribers in list(self._subscriptions.values()):
            for subscription in list(subscribers):
                subscription.close()
        self._subscriptions.clear()

    async def listen(
        self,
        topic: str,
        handler: Callable[[Any], Awaitable[None]],
        retry_delay: float = DEFAULT_SUBSCRIPTION_RETRY_SECONDS,
    ) -> None:
        """Feed every event of ``topic`` to ``handler`` until the bus closes.

        On a subscription (or handler) error the loop waits ``retry_delay``
        seconds and subscribes again. Cancel the task to stop listening.
        """
        while not self._closed:
            subscription = self.subscribe(topic)
            try:
                async with subscription:
                    async for event in subscription:
                        await handler(event)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Subscription to {topic} failed: {e}; "
                    f"resubscribing in {retry_delay}s"
                )
                await asyncio.sleep(retry_delay)
