"""Per-conversation change feed for inserted messages."""

import asyncio
from typing import Dict, Optional, Set
from uuid import UUID

import structlog

from ..domain.errors import SubscriptionError
from ..domain.models import Message

logger = structlog.get_logger()

_CLOSED = object()


class Subscription:
    """Live stream of messages inserted into one conversation.

    Use as an async context manager so the subscription is released on every
    exit path, and iterate it to receive messages.
    """

    def __init__(self, feed: "ChangeFeed", conversation_id: UUID, buffer_size: int) -> None:
        self.conversation_id = conversation_id
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size + 1)
        self._buffer_size = buffer_size
        self._error: Optional[SubscriptionError] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, message: Message) -> None:
        if self._closed or self._error is not None:
            return
        if self._queue.qsize() >= self._buffer_size:
            # Slot reserved for the failure marker.
            self._fail(SubscriptionError(
                "Subscriber fell behind the change feed",
                details={"conversation_id": str(self.conversation_id)},
            ))
            return
        self._queue.put_nowait(message)

    def _fail(self, error: SubscriptionError) -> None:
        if self._error is None:
            self._error = error
            self._queue.put_nowait(_CLOSED)
            logger.warning(
                "subscription_failed",
                conversation_id=str(self.conversation_id),
                error=error.message,
            )

    async def next(self, timeout: Optional[float] = None) -> Message:
        """Wait for the next message, raising SubscriptionError on failure or timeout."""
        if self._closed:
            raise SubscriptionError("Subscription already released")
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            raise SubscriptionError(
                "Timed out waiting for realtime event",
                details={"conversation_id": str(self.conversation_id)},
            )
        if item is _CLOSED:
            if self._error is None:
                raise SubscriptionError("Subscription already released")
            raise self._error
        return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Message:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self.next()
        except SubscriptionError:
            if self._closed and self._error is None:
                raise StopAsyncIteration
            raise

    def close(self) -> None:
        """Release the subscription, waking any reader blocked on it. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._error is None and not self._queue.full():
            # Failed subscriptions already carry the marker.
            self._queue.put_nowait(_CLOSED)
        self._feed._remove(self)
        logger.info("subscription_released", conversation_id=str(self.conversation_id))

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChangeFeed:
    """Fans every inserted message out to the live subscribers of its conversation.

    Delivery is at-least-once from the subscriber's point of view and carries
    no ordering guarantee relative to send acknowledgments.
    """

    def __init__(self, buffer_size: int = 256) -> None:
        self.buffer_size = buffer_size
        self._subscriptions: Dict[UUID, Set[Subscription]] = {}

    def subscribe(self, conversation_id: UUID) -> Subscription:
        subscription = Subscription(self, conversation_id, self.buffer_size)
        self._subscriptions.setdefault(conversation_id, set()).add(subscription)
        logger.info(
            "subscription_opened",
            conversation_id=str(conversation_id),
            subscribers=len(self._subscriptions[conversation_id]),
        )
        return subscription

    def publish(self, message: Message) -> int:
        """Deliver ``message`` to every subscriber; returns how many received it."""
        subscribers = list(self._subscriptions.get(message.conversation_id, ()))
        for subscription in subscribers:
            subscription._deliver(message)
        logger.debug(
            "message_published",
            conversation_id=str(message.conversation_id),
            message_id=str(message.id),
            subscribers=len(subscribers),
        )
        return len(subscribers)

    def subscriber_count(self, conversation_id: UUID) -> int:
        return len(self._subscriptions.get(conversation_id, ()))

    def close(self) -> None:
        """Fail every live subscription, e.g. on shutdown."""
        for subscriptions in list(self._subscriptions.values()):
            for subscription in list(subscriptions):
                subscription._fail(SubscriptionError("Realtime channel closed"))
        logger.info("change_feed_closed")

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.conversation_id)
        if subscriptions is None:
            return
        subscriptions.discard(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.conversation_id]
