"""Conversation identity resolution."""

from typing import Optional
from uuid import UUID

import structlog

from ..domain.errors import (
    ConversationCreationError,
    DuplicateConversationError,
    TransientStoreError,
    UnauthenticatedError,
)
from ..domain.models import canonical_key
from ..metrics import CONVERSATIONS_CREATED, CREATE_RACES
from ..repositories.base import Repository
from .timeouts import bounded

logger = structlog.get_logger()


class ConversationResolver:
    """Maps (party, party, topic) to the single conversation for that triple.

    Creation is an explicit two-step: insert, and on a uniqueness conflict
    re-read the row a concurrent caller created. No store-specific upsert is
    relied on.
    """

    def __init__(self, repository: Repository, store_timeout: float = 10.0) -> None:
        self.repository = repository
        self.store_timeout = store_timeout

    async def resolve(
        self, current_party: str, other_party: str, topic_id: Optional[str] = None
    ) -> UUID:
        if not current_party:
            raise UnauthenticatedError()
        key = canonical_key(current_party, other_party, topic_id)
        log = logger.bind(topic_id=topic_id, party_low=key.party_low, party_high=key.party_high)

        existing = await bounded(
            self.repository.find_conversation(key), self.store_timeout, "find_conversation"
        )
        if existing is not None:
            log.debug("conversation_resolved", conversation_id=str(existing.id), created=False)
            return existing.id

        try:
            created = await bounded(
                self.repository.insert_conversation(key), self.store_timeout, "insert_conversation"
            )
        except DuplicateConversationError as e:
            log.info("conversation_create_race")
            CREATE_RACES.inc()
            try:
                winner = await bounded(
                    self.repository.find_conversation(key), self.store_timeout, "find_conversation"
                )
            except TransientStoreError as refetch_error:
                log.error("conversation_refetch_failed", error=refetch_error.message)
                raise ConversationCreationError(
                    f"Could not create or retrieve chat: {refetch_error.message}",
                    details={"topic_id": topic_id},
                ) from refetch_error
            if winner is None:
                log.error("conversation_refetch_failed")
                raise ConversationCreationError(
                    f"Could not create or retrieve chat: {e}",
                    details={"topic_id": topic_id},
                ) from e
            log.debug("conversation_resolved", conversation_id=str(winner.id), created=False)
            return winner.id

        log.info("conversation_created", conversation_id=str(created.id))
        CONVERSATIONS_CREATED.inc()
        return created.id
