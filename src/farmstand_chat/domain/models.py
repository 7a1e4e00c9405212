"""Domain models for buyer/farmer conversations."""

from datetime import datetime, timezone
from typing import List, NamedTuple, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from .errors import SelfConversationError

PREVIEW_LENGTH = 75


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationKey(NamedTuple):
    """Natural unique key of a conversation."""

    topic_id: Optional[str]
    party_low: str
    party_high: str


def canonical_key(party_a: str, party_b: str, topic_id: Optional[str] = None) -> ConversationKey:
    """Order two parties so that (a, b) and (b, a) map to the same key."""
    a, b = str(party_a), str(party_b)
    if a == b:
        raise SelfConversationError()
    low, high = (a, b) if a < b else (b, a)
    return ConversationKey(topic_id=topic_id, party_low=low, party_high=high)


def make_preview(body: str, length: int = PREVIEW_LENGTH) -> str:
    """Trimmed message body cut to the preview length."""
    return body.strip()[:length]


class Message(BaseModel):
    """Message model."""

    id: UUID = Field(default_factory=uuid4)
    conversation_id: UUID
    sender_id: str
    body: str
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.created_at, str(self.id))


class Conversation(BaseModel):
    """Conversation model.

    Parties are always stored in canonical order, which makes
    (topic_id, party_low, party_high) a natural unique key.
    """

    id: UUID = Field(default_factory=uuid4)
    topic_id: Optional[str] = None
    party_low: str
    party_high: str
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: Optional[datetime] = None
    preview_text: Optional[str] = None

    @model_validator(mode="after")
    def _check_party_order(self) -> "Conversation":
        if not self.party_low < self.party_high:
            raise ValueError("party_low must sort strictly before party_high")
        return self

    @property
    def key(self) -> ConversationKey:
        return ConversationKey(self.topic_id, self.party_low, self.party_high)

    @property
    def participants(self) -> Tuple[str, str]:
        return (self.party_low, self.party_high)

    def has_participant(self, party: str) -> bool:
        return party in self.participants

    def other_party(self, party: str) -> str:
        """Return the participant that is not ``party``."""
        return self.party_high if party == self.party_low else self.party_low


class PartyProfile(BaseModel):
    """Public display attributes of a party."""

    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or "User"


class TopicInfo(BaseModel):
    """Display attributes of the listing a conversation is about."""

    id: str
    title: str
    image_urls: List[str] = []


class ConversationSummary(BaseModel):
    """One row of a party's conversation list."""

    conversation: Conversation
    other_party_id: str
    other_party: Optional[PartyProfile] = None
    topic: Optional[TopicInfo] = None


class ConversationDetail(BaseModel):
    """A conversation as seen by one of its participants."""

    conversation: Conversation
    other_party_id: str
    other_party: Optional[PartyProfile] = None
    topic: Optional[TopicInfo] = None
    messages: List[Message] = []
