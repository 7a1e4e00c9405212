"""Conversation list and detail assembly."""

import asyncio
from typing import List, Optional, Tuple
from uuid import UUID

import structlog

from ..domain.models import (
    Conversation,
    ConversationDetail,
    ConversationSummary,
    PartyProfile,
    TopicInfo,
)
from ..repositories.base import Repository
from .gateway import MessageGateway
from .timeouts import bounded

logger = structlog.get_logger()


class ConversationListAggregator:
    """Lists a party's conversations with the other party and topic attached.

    Enrichment lookups are independent per row; a failed lookup leaves that
    field empty instead of dropping the row or failing the listing.
    """

    def __init__(
        self,
        repository: Repository,
        gateway: Optional[MessageGateway] = None,
        store_timeout: float = 10.0,
    ) -> None:
        self.repository = repository
        self.gateway = gateway or MessageGateway(repository, store_timeout=store_timeout)
        self.store_timeout = store_timeout

    async def list_for(
        self, party: str, limit: int = 100, offset: int = 0
    ) -> List[ConversationSummary]:
        conversations = await bounded(
            self.repository.list_conversations_for_party(party, limit=limit, offset=offset),
            self.store_timeout,
            "list_conversations_for_party",
        )
        summaries = await asyncio.gather(
            *[self._summarize(conversation, party) for conversation in conversations]
        )
        logger.info("conversations_listed", party=party, count=len(summaries))
        return list(summaries)

    async def detail_for(
        self, party: str, conversation_id: UUID, history_limit: int = 500
    ) -> ConversationDetail:
        """A participant's view of one conversation including its message history."""
        conversation = await self.gateway.participant_conversation(conversation_id, party)
        (other_party, topic), messages = await asyncio.gather(
            self._enrich(conversation, party),
            bounded(
                self.repository.get_messages(conversation_id, limit=history_limit),
                self.store_timeout,
                "get_messages",
            ),
        )
        return ConversationDetail(
            conversation=conversation,
            other_party_id=conversation.other_party(party),
            other_party=other_party,
            topic=topic,
            messages=messages,
        )

    async def _summarize(self, conversation: Conversation, party: str) -> ConversationSummary:
        other_party, topic = await self._enrich(conversation, party)
        return ConversationSummary(
            conversation=conversation,
            other_party_id=conversation.other_party(party),
            other_party=other_party,
            topic=topic,
        )

    async def _enrich(
        self, conversation: Conversation, party: str
    ) -> Tuple[Optional[PartyProfile], Optional[TopicInfo]]:
        other_party_id = conversation.other_party(party)
        profile_lookup = self._lookup(
            self.repository.get_profile(other_party_id),
            "get_profile",
            conversation.id,
            party=other_party_id,
        )
        if conversation.topic_id is None:
            return await profile_lookup, None
        topic_lookup = self._lookup(
            self.repository.get_topic(conversation.topic_id),
            "get_topic",
            conversation.id,
            topic_id=conversation.topic_id,
        )
        profile, topic = await asyncio.gather(profile_lookup, topic_lookup)
        return profile, topic

    async def _lookup(self, awaitable, operation: str, conversation_id: UUID, **context):
        try:
            return await bounded(awaitable, self.store_timeout, operation)
        except Exception as e:
            logger.error(
                "conversation_enrichment_failed",
                operation=operation,
                conversation_id=str(conversation_id),
                error=str(e),
                **context,
            )
            return None
