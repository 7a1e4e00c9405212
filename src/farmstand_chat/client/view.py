"""An open conversation as a client sees it."""

import asyncio
import contextlib
from dataclasses import dataclass
from typing import List, Optional, Union
from uuid import UUID

import structlog

from ..domain.errors import ChatError, EmptyMessageError, SubscriptionError
from ..domain.models import Message
from ..realtime.feed import Subscription
from ..services.chat import ChatService
from .reconciler import MessageReconciler, PendingMessage

logger = structlog.get_logger()


@dataclass
class SendOutcome:
    """Result of a send from the composer's point of view.

    On failure ``draft`` holds the text to put back into the input.
    """

    message: Optional[Message] = None
    draft: str = ""
    error: Optional[ChatError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConversationView:
    """Keeps a reconciled message list for one conversation.

    Entering the view loads history and starts listening on the realtime
    feed; leaving it releases the subscription on every exit path. If the
    feed fails the view stays usable through ``send`` and ``refresh`` and
    reports ``degraded``.
    """

    def __init__(self, chat: ChatService, conversation_id: UUID) -> None:
        self.chat = chat
        self.conversation_id = conversation_id
        self.reconciler = MessageReconciler(conversation_id, chat.current_party)
        self.degraded = False
        self.last_error: Optional[ChatError] = None
        self._exit_stack: Optional[contextlib.AsyncExitStack] = None
        self._pump: Optional[asyncio.Task] = None

    @property
    def messages(self) -> List[Message]:
        return self.reconciler.messages

    def rendered(self) -> List[Union[Message, PendingMessage]]:
        return self.reconciler.rendered()

    async def open(self) -> "ConversationView":
        # Subscribe before loading history so nothing inserted in between is missed.
        async with contextlib.AsyncExitStack() as stack:
            subscription = await stack.enter_async_context(
                self.chat.open_subscription(self.conversation_id)
            )
            await self.refresh()
            self._exit_stack = stack.pop_all()
        self._pump = asyncio.create_task(self._consume(subscription))
        logger.info("conversation_view_opened", conversation_id=str(self.conversation_id))
        return self

    async def close(self) -> None:
        if self._pump is not None:
            self._pump.cancel()
            await asyncio.gather(self._pump, return_exceptions=True)
            self._pump = None
        if self._exit_stack is not None:
            stack, self._exit_stack = self._exit_stack, None
            await stack.aclose()
            logger.info("conversation_view_closed", conversation_id=str(self.conversation_id))

    async def __aenter__(self) -> "ConversationView":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def refresh(self) -> int:
        """Re-read the stored history; returns how many messages were new."""
        history = await self.chat.get_messages(self.conversation_id, limit=10_000)
        return self.reconciler.load(history)

    async def send(self, draft: str) -> SendOutcome:
        """Send ``draft``. A failure inserts nothing and returns the draft for retry."""
        if not draft.strip():
            return SendOutcome(draft=draft, error=EmptyMessageError())
        pending = self.reconciler.begin_send(draft)
        try:
            message = await self.chat.send_message(self.conversation_id, draft)
        except ChatError as e:
            self.last_error = e
            return SendOutcome(draft=self.reconciler.fail_send(pending), error=e)
        except Exception as e:
            logger.error(
                "send_failed_unexpectedly",
                conversation_id=str(self.conversation_id),
                error=str(e),
            )
            error = ChatError(f"Send failed: {e}")
            self.last_error = error
            return SendOutcome(draft=self.reconciler.fail_send(pending), error=error)
        except asyncio.CancelledError:
            self.reconciler.fail_send(pending)
            raise
        self.reconciler.local_send_accepted(message, pending)
        return SendOutcome(message=message)

    async def _consume(self, subscription: Subscription) -> None:
        try:
            async for message in subscription:
                self.reconciler.remote_event(message)
        except SubscriptionError as e:
            self.degraded = True
            self.last_error = e
            logger.warning(
                "conversation_view_degraded",
                conversation_id=str(self.conversation_id),
                error=e.message,
            )
