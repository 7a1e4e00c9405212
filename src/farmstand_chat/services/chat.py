"""Chat operations exposed to the presentation layer."""

import asyncio
import contextlib
import inspect
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union
from uuid import UUID

import structlog

from ..config import Settings, get_settings
from ..domain.errors import SubscriptionError
from ..domain.models import ConversationDetail, ConversationSummary, Message
from ..metrics import ACTIVE_SUBSCRIPTIONS
from ..realtime.feed import Subscription
from ..repositories.base import Repository
from .aggregator import ConversationListAggregator
from .gateway import MessageGateway
from .identity import IdentityProvider, require_party
from .resolver import ConversationResolver

logger = structlog.get_logger()

MessageCallback = Callable[[Message], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[SubscriptionError], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], Awaitable[None]]


async def _call(callback: Callable, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ChatService:
    """Binds the chat components to the current caller's identity.

    Every operation asks the identity provider who is calling and fails
    closed when it cannot tell.
    """

    def __init__(
        self,
        repository: Repository,
        identity: IdentityProvider,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.repository = repository
        self.identity = identity
        self.resolver = ConversationResolver(repository, store_timeout=settings.store_timeout)
        self.gateway = MessageGateway(
            repository,
            send_timeout=settings.send_timeout,
            store_timeout=settings.store_timeout,
            preview_length=settings.preview_length,
        )
        self.aggregator = ConversationListAggregator(
            repository, gateway=self.gateway, store_timeout=settings.store_timeout
        )

    @property
    def current_party(self) -> str:
        return require_party(self.identity)

    async def resolve_conversation(self, other_party: str, topic_id: Optional[str] = None) -> UUID:
        """Get or create the conversation with ``other_party`` about ``topic_id``."""
        return await self.resolver.resolve(self.current_party, other_party, topic_id)

    async def send_message(self, conversation_id: UUID, body: str) -> Message:
        return await self.gateway.send(conversation_id, self.current_party, body)

    async def get_messages(
        self, conversation_id: UUID, limit: int = 100, offset: int = 0
    ) -> List[Message]:
        return await self.gateway.history(
            conversation_id, self.current_party, limit=limit, offset=offset
        )

    async def list_conversations(
        self, limit: int = 100, offset: int = 0
    ) -> List[ConversationSummary]:
        return await self.aggregator.list_for(self.current_party, limit=limit, offset=offset)

    async def get_conversation(self, conversation_id: UUID) -> ConversationDetail:
        return await self.aggregator.detail_for(self.current_party, conversation_id)

    @contextlib.asynccontextmanager
    async def open_subscription(self, conversation_id: UUID) -> AsyncIterator[Subscription]:
        """Subscribe to a conversation's inserts for the duration of the block."""
        party = self.current_party
        await self.gateway.participant_conversation(conversation_id, party)
        subscription = self.repository.feed.subscribe(conversation_id)
        ACTIVE_SUBSCRIPTIONS.inc()
        try:
            yield subscription
        finally:
            subscription.close()
            ACTIVE_SUBSCRIPTIONS.dec()

    async def subscribe(
        self,
        conversation_id: UUID,
        on_message: MessageCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """
        Deliver every new message of a conversation to ``on_message``.

        Returns an async ``unsubscribe`` callable that stops delivery and
        releases the subscription. A feed failure, or an exception raised by
        ``on_message``, is reported to ``on_error`` and also releases it.
        """
        ready = asyncio.get_running_loop().create_future()

        async def pump() -> None:
            try:
                async with self.open_subscription(conversation_id) as subscription:
                    ready.set_result(None)
                    async for message in subscription:
                        await _call(on_message, message)
            except SubscriptionError as e:
                if not ready.done():
                    ready.set_exception(e)
                    return
                logger.warning(
                    "subscription_degraded",
                    conversation_id=str(conversation_id),
                    error=e.message,
                )
                if on_error is not None:
                    await _call(on_error, e)
            except Exception as e:
                if not ready.done():
                    ready.set_exception(e)
                    return
                logger.error(
                    "subscription_callback_error",
                    conversation_id=str(conversation_id),
                    error=str(e),
                )
                if on_error is not None:
                    await _call(on_error, SubscriptionError(
                        f"Message callback failed: {e}",
                        details={"conversation_id": str(conversation_id)},
                    ))

        task = asyncio.create_task(pump())
        await ready

        async def unsubscribe() -> None:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        return unsubscribe
