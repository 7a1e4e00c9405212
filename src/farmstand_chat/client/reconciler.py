"""Client-side merge of acknowledged, realtime and optimistic messages."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from uuid import UUID

import structlog

from ..domain.models import Message

logger = structlog.get_logger()


@dataclass
class PendingMessage:
    """Optimistic placeholder for a message not yet confirmed by the server."""

    local_seq: int
    sender_id: str
    body: str
    message_id: Optional[UUID] = None

    @property
    def resolved(self) -> bool:
        return self.message_id is not None


class MessageReconciler:
    """Single source of truth for what a conversation view renders.

    Confirmed messages are unique by id and kept in (created_at, id) order.
    Merging is idempotent and commutative: any interleaving of send
    acknowledgments and realtime deliveries, repeated any number of times,
    yields the same sequence.
    """

    def __init__(self, conversation_id: UUID, current_party: str) -> None:
        self.conversation_id = conversation_id
        self.current_party = current_party
        self._messages: List[Message] = []
        self._ids: Dict[UUID, Message] = {}
        self._pending: List[PendingMessage] = []
        self._next_seq = 0

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def pending(self) -> List[PendingMessage]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: UUID) -> bool:
        return message_id in self._ids

    def merge(self, message: Message) -> bool:
        """Insert ``message`` unless its id is already present. Returns True if inserted."""
        if message.conversation_id != self.conversation_id:
            logger.warning(
                "reconciler_foreign_message",
                conversation_id=str(self.conversation_id),
                message_conversation_id=str(message.conversation_id),
            )
            return False
        if message.id in self._ids:
            return False
        self._ids[message.id] = message
        self._messages.append(message)
        self._messages.sort(key=lambda m: m.sort_key)
        return True

    def load(self, messages: List[Message]) -> int:
        """Merge a batch, e.g. the initial history; returns how many were new."""
        return sum(1 for message in messages if self.merge(message))

    def begin_send(self, body: str) -> PendingMessage:
        """Register an optimistic placeholder for a message about to be sent."""
        pending = PendingMessage(local_seq=self._next_seq, sender_id=self.current_party, body=body)
        self._next_seq += 1
        self._pending.append(pending)
        return pending

    def local_send_accepted(
        self, message: Message, pending: Optional[PendingMessage] = None
    ) -> bool:
        """Apply the synchronous acknowledgment of a send."""
        if pending is not None:
            self._resolve(pending, message.id)
        return self.merge(message)

    def remote_event(self, message: Message) -> bool:
        """Apply a realtime delivery, which may duplicate or precede the acknowledgment."""
        if message.sender_id == self.current_party and message.id not in self._ids:
            # Own sends are matched to placeholders in send order.
            oldest = next((p for p in self._pending if not p.resolved), None)
            if oldest is not None:
                self._resolve(oldest, message.id)
        return self.merge(message)

    def fail_send(self, pending: PendingMessage) -> str:
        """Drop the placeholder of a failed send and hand its draft back."""
        if pending in self._pending:
            self._pending.remove(pending)
        logger.info(
            "send_failed_draft_restored",
            conversation_id=str(self.conversation_id),
            local_seq=pending.local_seq,
        )
        return pending.body

    def rendered(self) -> List[Union[Message, PendingMessage]]:
        """Confirmed messages followed by placeholders still awaiting the server."""
        return [*self._messages, *self._pending]

    def _resolve(self, pending: PendingMessage, message_id: UUID) -> None:
        pending.message_id = message_id
        if pending in self._pending:
            self._pending.remove(pending)
