"""
In-process fan-out of backend events to cancellable subscriptions.

Each subscription owns an asyncio.Queue; the hub broadcasts to every open
subscription. A subscription is an async iterator and an async context
manager so consumers can write:

    async with backend.subscribe_message_inserts() as feed:
        async for event in feed:
            ...

and be sure it is released on every exit path.
"""

import asyncio
from collections.abc import Callable
from typing import Generic, TypeVar

from rentals.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

E = TypeVar("E")

_CLOSED = object()


class Subscription(Generic[E]):
    def __init__(self, hub: "EventHub[E]", name: str):
        self._hub = hub
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.name = name

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: E) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        """Release the subscription. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self._hub.unsubscribe(self)

    def __aiter__(self) -> "Subscription[E]":
        return self

    async def __anext__(self) -> E:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription[E]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class EventHub(Generic[E]):
    """Registers subscriptions and broadcasts events to all of them."""

    def __init__(self, name: str, on_empty: Callable[[], None] | None = None):
        self.name = name
        self._subscriptions: list[Subscription[E]] = []
        self._on_empty = on_empty

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, initial: E | None = None) -> Subscription[E]:
        subscription: Subscription[E] = Subscription(self, self.name)
        self._subscriptions.append(subscription)
        if initial is not None:
            subscription.deliver(initial)
        logger.debug("Subscription opened", hub=self.name, subscribers=self.subscriber_count)
        return subscription

    def unsubscribe(self, subscription: Subscription[E]) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return

        logger.debug("Subscription closed", hub=self.name, subscribers=self.subscriber_count)
        if not self._subscriptions and self._on_empty:
            self._on_empty()

    def publish(self, event: E) -> None:
        for subscription in list(self._subscriptions):
            subscription.deliver(event)

    def close_all(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
