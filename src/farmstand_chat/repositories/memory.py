"""In-memory repository implementation."""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from uuid import UUID

import structlog

from ..domain.errors import DuplicateConversationError
from ..domain.models import (
    Conversation,
    ConversationKey,
    Message,
    PartyProfile,
    TopicInfo,
    utcnow,
)
from ..realtime.feed import ChangeFeed
from .base import Repository

logger = structlog.get_logger()


class InMemoryRepository(Repository):
    """In-memory store with a unique index on the conversation key.

    Every call yields to the event loop (optionally after ``latency`` seconds)
    before touching state, so concurrent callers interleave the way they would
    against a remote database.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None, latency: float = 0.0) -> None:
        self._feed = feed or ChangeFeed()
        self.latency = latency
        self._conversations: Dict[UUID, Conversation] = {}
        self._conversation_index: Dict[ConversationKey, UUID] = {}
        self._messages: Dict[UUID, List[Message]] = {}
        self._profiles: Dict[str, PartyProfile] = {}
        self._topics: Dict[str, TopicInfo] = {}
        self._last_created_at: Optional[datetime] = None
        self._async_lock = asyncio.Lock()
        logger.info("repository_initialized", latency=latency)

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    def _next_timestamp(self) -> datetime:
        now = utcnow()
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = now
        return now

    async def find_conversation(self, key: ConversationKey) -> Optional[Conversation]:
        await self._round_trip()
        async with self._async_lock:
            conversation_id = self._conversation_index.get(key)
            if conversation_id is None:
                return None
            return self._conversations[conversation_id].model_copy()

    async def insert_conversation(self, key: ConversationKey) -> Conversation:
        await self._round_trip()
        async with self._async_lock:
            if key in self._conversation_index:
                logger.warning(
                    "conversation_unique_violation",
                    topic_id=key.topic_id,
                    party_low=key.party_low,
                    party_high=key.party_high,
                )
                raise DuplicateConversationError(
                    f"Conversation already exists for {key.topic_id}/{key.party_low}/{key.party_high}"
                )
            conversation = Conversation(
                topic_id=key.topic_id,
                party_low=key.party_low,
                party_high=key.party_high,
                created_at=self._next_timestamp(),
            )
            self._conversations[conversation.id] = conversation
            self._conversation_index[key] = conversation.id
            self._messages[conversation.id] = []
            logger.info("conversation_inserted", conversation_id=str(conversation.id))
            return conversation.model_copy()

    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        await self._round_trip()
        async with self._async_lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                logger.warning("conversation_not_found", conversation_id=str(conversation_id))
                return None
            return conversation.model_copy()

    async def update_conversation_activity(
        self, conversation_id: UUID, preview_text: str, last_activity_at: datetime
    ) -> None:
        await self._round_trip()
        async with self._async_lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise ValueError(f"Conversation {conversation_id} not found")
            conversation.preview_text = preview_text
            conversation.last_activity_at = last_activity_at

    async def list_conversations_for_party(
        self, party: str, limit: int = 100, offset: int = 0
    ) -> List[Conversation]:
        await self._round_trip()
        async with self._async_lock:
            conversations = [c for c in self._conversations.values() if c.has_participant(party)]
        # Never-active conversations sort last.
        conversations.sort(
            key=lambda c: (c.last_activity_at is not None, c.last_activity_at or c.created_at),
            reverse=True,
        )
        return [c.model_copy() for c in conversations[offset : offset + limit]]

    async def insert_message(self, conversation_id: UUID, sender_id: str, body: str) -> Message:
        await self._round_trip()
        async with self._async_lock:
            if conversation_id not in self._conversations:
                logger.error(
                    "conversation_not_found_for_message",
                    conversation_id=str(conversation_id),
                )
                raise ValueError(f"Conversation {conversation_id} not found")
            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                body=body,
                created_at=self._next_timestamp(),
            )
            self._messages[conversation_id].append(message)
            logger.info(
                "message_inserted",
                conversation_id=str(conversation_id),
                message_id=str(message.id),
            )
        self._feed.publish(message)
        return message

    async def get_messages(
        self, conversation_id: UUID, limit: int = 100, offset: int = 0
    ) -> List[Message]:
        await self._round_trip()
        async with self._async_lock:
            messages = sorted(self._messages.get(conversation_id, []), key=lambda m: m.sort_key)
            return messages[offset : offset + limit]

    async def get_profile(self, party: str) -> Optional[PartyProfile]:
        await self._round_trip()
        return self._profiles.get(party)

    async def get_topic(self, topic_id: str) -> Optional[TopicInfo]:
        await self._round_trip()
        return self._topics.get(topic_id)

    def put_profile(self, profile: PartyProfile) -> None:
        self._profiles[profile.id] = profile

    def put_topic(self, topic: TopicInfo) -> None:
        self._topics[topic.id] = topic
