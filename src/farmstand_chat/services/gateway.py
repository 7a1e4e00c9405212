"""Message persistence with participation checks."""

from typing import List
from uuid import UUID

import structlog

from ..domain.errors import (
    ConversationNotFoundError,
    EmptyMessageError,
    NotParticipantError,
    UnauthenticatedError,
)
from ..domain.models import PREVIEW_LENGTH, Conversation, Message, make_preview
from ..metrics import MESSAGES_SENT, PREVIEW_UPDATE_FAILURES
from ..repositories.base import Repository
from .timeouts import bounded

logger = structlog.get_logger()


class MessageGateway:
    """Validates and persists single chat messages."""

    def __init__(
        self,
        repository: Repository,
        send_timeout: float = 10.0,
        store_timeout: float = 10.0,
        preview_length: int = PREVIEW_LENGTH,
    ) -> None:
        self.repository = repository
        self.send_timeout = send_timeout
        self.store_timeout = store_timeout
        self.preview_length = preview_length

    async def participant_conversation(self, conversation_id: UUID, party: str) -> Conversation:
        """Fetch a conversation, requiring ``party`` to be one of its two parties."""
        conversation = await bounded(
            self.repository.get_conversation(conversation_id),
            self.store_timeout,
            "get_conversation",
            conversation_id=str(conversation_id),
        )
        if conversation is None:
            raise ConversationNotFoundError(details={"conversation_id": str(conversation_id)})
        if not conversation.has_participant(party):
            logger.warning(
                "not_participant",
                conversation_id=str(conversation_id),
                party=party,
            )
            raise NotParticipantError(details={"conversation_id": str(conversation_id)})
        return conversation

    async def send(self, conversation_id: UUID, sender_id: str, body: str) -> Message:
        """
        Persist a message from ``sender_id``.

        The message counts as sent once the insert succeeds. Refreshing the
        conversation preview afterwards is best effort: a failure there is
        logged and never surfaced to the sender.
        """
        content = (body or "").strip()
        if not content:
            raise EmptyMessageError()
        if not sender_id:
            raise UnauthenticatedError()

        await self.participant_conversation(conversation_id, sender_id)

        message = await bounded(
            self.repository.insert_message(conversation_id, sender_id, content),
            self.send_timeout,
            "insert_message",
            conversation_id=str(conversation_id),
        )
        MESSAGES_SENT.inc()
        logger.info(
            "message_sent",
            conversation_id=str(conversation_id),
            message_id=str(message.id),
            body_length=len(content),
        )

        try:
            await bounded(
                self.repository.update_conversation_activity(
                    conversation_id,
                    make_preview(content, self.preview_length),
                    message.created_at,
                ),
                self.store_timeout,
                "update_conversation_activity",
                conversation_id=str(conversation_id),
            )
        except Exception as e:
            # TODO: a backfill pass could repair previews left stale here.
            PREVIEW_UPDATE_FAILURES.inc()
            logger.error(
                "conversation_preview_update_failed",
                conversation_id=str(conversation_id),
                message_id=str(message.id),
                error=str(e),
            )

        return message

    async def history(
        self, conversation_id: UUID, party: str, limit: int = 100, offset: int = 0
    ) -> List[Message]:
        """Ordered messages of a conversation, visible to its participants only."""
        await self.participant_conversation(conversation_id, party)
        return await bounded(
            self.repository.get_messages(conversation_id, limit=limit, offset=offset),
            self.store_timeout,
            "get_messages",
            conversation_id=str(conversation_id),
        )
