"""Tests for message persistence."""

import asyncio
from uuid import uuid4

import pytest

from farmstand_chat.domain.errors import (
    ConversationNotFoundError,
    EmptyMessageError,
    NotParticipantError,
    TransientStoreError,
    UnauthenticatedError,
)
from farmstand_chat.repositories.memory import InMemoryRepository
from farmstand_chat.services.gateway import MessageGateway
from farmstand_chat.services.resolver import ConversationResolver


class BrokenPreviewRepository(InMemoryRepository):
    async def update_conversation_activity(self, conversation_id, preview_text, last_activity_at):
        raise ConnectionError("store connection reset")


class SlowInsertRepository(InMemoryRepository):
    async def insert_message(self, conversation_id, sender_id, body):
        await asyncio.sleep(1)
        return await super().insert_message(conversation_id, sender_id, body)


async def _conversation(repository, a="u1", b="u2", topic="p42"):
    return await ConversationResolver(repository).resolve(a, b, topic)


@pytest.mark.asyncio
async def test_send_persists_and_updates_preview(repository):
    conversation_id = await _conversation(repository)
    gateway = MessageGateway(repository)

    message = await gateway.send(conversation_id, "u1", "Is this still available?")

    assert message.sender_id == "u1"
    assert message.body == "Is this still available?"
    assert await repository.get_messages(conversation_id) == [message]
    conversation = await repository.get_conversation(conversation_id)
    assert conversation.preview_text == "Is this still available?"
    assert conversation.last_activity_at == message.created_at


@pytest.mark.asyncio
async def test_send_trims_body(repository):
    conversation_id = await _conversation(repository)
    message = await MessageGateway(repository).send(conversation_id, "u2", "  yes, 3 crates left \n")
    assert message.body == "yes, 3 crates left"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", ["", "   ", "\n\t "])
async def test_whitespace_body_is_rejected(repository, body):
    conversation_id = await _conversation(repository)
    with pytest.raises(EmptyMessageError):
        await MessageGateway(repository).send(conversation_id, "u1", body)
    assert await repository.get_messages(conversation_id) == []


@pytest.mark.asyncio
async def test_outsider_cannot_send(repository):
    conversation_id = await _conversation(repository)
    gateway = MessageGateway(repository)
    with pytest.raises(NotParticipantError):
        await gateway.send(conversation_id, "u3", "let me in")
    assert await repository.get_messages(conversation_id) == []


@pytest.mark.asyncio
async def test_unknown_conversation(repository):
    with pytest.raises(ConversationNotFoundError):
        await MessageGateway(repository).send(uuid4(), "u1", "hello")


@pytest.mark.asyncio
async def test_anonymous_sender_rejected(repository):
    conversation_id = await _conversation(repository)
    with pytest.raises(UnauthenticatedError):
        await MessageGateway(repository).send(conversation_id, "", "hello")


@pytest.mark.asyncio
async def test_long_body_truncates_preview_only(repository):
    conversation_id = await _conversation(repository)
    body = "a" * 200

    message = await MessageGateway(repository).send(conversation_id, "u1", body)

    assert len(message.body) == 200
    conversation = await repository.get_conversation(conversation_id)
    assert conversation.preview_text == "a" * 75


@pytest.mark.asyncio
async def test_preview_failure_does_not_fail_send():
    repository = BrokenPreviewRepository()
    conversation_id = await _conversation(repository)

    message = await MessageGateway(repository).send(conversation_id, "u1", "hello")

    assert await repository.get_messages(conversation_id) == [message]
    conversation = await repository.get_conversation(conversation_id)
    assert conversation.preview_text is None


@pytest.mark.asyncio
async def test_slow_insert_times_out_as_retryable():
    repository = SlowInsertRepository()
    conversation_id = await _conversation(repository)
    with pytest.raises(TransientStoreError) as excinfo:
        await MessageGateway(repository, send_timeout=0.05).send(conversation_id, "u1", "hello")
    assert excinfo.value.retryable


@pytest.mark.asyncio
async def test_history_is_ordered_and_private(repository):
    conversation_id = await _conversation(repository)
    gateway = MessageGateway(repository)
    sent = [await gateway.send(conversation_id, sender, f"msg {i}") for i, sender in enumerate(["u1", "u2", "u1"])]

    history = await gateway.history(conversation_id, "u2")
    assert [m.id for m in history] == [m.id for m in sent]
    assert [m.created_at for m in history] == sorted(m.created_at for m in history)

    with pytest.raises(NotParticipantError):
        await gateway.history(conversation_id, "u3")
