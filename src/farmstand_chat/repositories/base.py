"""Base repository interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from ..domain.models import Conversation, ConversationKey, Message, PartyProfile, TopicInfo
from ..realtime.feed import ChangeFeed


class Repository(ABC):
    """Abstract base class for chat storage.

    Implementations assign message ids and timestamps server-side, make single
    row inserts atomic and publish every message insert on ``feed``.
    """

    @property
    @abstractmethod
    def feed(self) -> ChangeFeed:
        """Realtime change feed for message inserts."""
        pass

    @abstractmethod
    async def find_conversation(self, key: ConversationKey) -> Optional[Conversation]:
        """Look a conversation up by its unique (topic, party_low, party_high) key."""
        pass

    @abstractmethod
    async def insert_conversation(self, key: ConversationKey) -> Conversation:
        """Insert a conversation, raising DuplicateConversationError if the key exists."""
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        """Retrieve a conversation by ID."""
        pass

    @abstractmethod
    async def update_conversation_activity(
        self, conversation_id: UUID, preview_text: str, last_activity_at: datetime
    ) -> None:
        """Update the denormalized preview and activity timestamp."""
        pass

    @abstractmethod
    async def list_conversations_for_party(
        self, party: str, limit: int = 100, offset: int = 0
    ) -> List[Conversation]:
        """Conversations a party takes part in, most recent activity first."""
        pass

    @abstractmethod
    async def insert_message(self, conversation_id: UUID, sender_id: str, body: str) -> Message:
        """Persist a message and publish it on the change feed."""
        pass

    @abstractmethod
    async def get_messages(
        self, conversation_id: UUID, limit: int = 100, offset: int = 0
    ) -> List[Message]:
        """Get messages for a conversation ordered by creation time."""
        pass

    @abstractmethod
    async def get_profile(self, party: str) -> Optional[PartyProfile]:
        """Public profile of a party."""
        pass

    @abstractmethod
    async def get_topic(self, topic_id: str) -> Optional[TopicInfo]:
        """Display attributes of a topic (product listing)."""
        pass
