"""Test suite for concurrent operations."""

import asyncio
from uuid import uuid4

import pytest

from farmstand_chat.client.view import ConversationView
from farmstand_chat.repositories.memory import InMemoryRepository
from farmstand_chat.services.chat import ChatService
from farmstand_chat.services.identity import StaticIdentityProvider


def as_party(party):
    return {"X-Party-Id": party}


@pytest.mark.asyncio
async def test_concurrent_contact_creates_one_conversation(client, repository):
    """Both parties and several tabs contacting each other at once converge."""
    requests = [
        client.post(
            "/conversations",
            json={"other_party_id": other, "topic_id": "p42"},
            headers=as_party(me),
        )
        for me, other in [("u1", "u2"), ("u2", "u1")] * 10
    ]
    responses = await asyncio.gather(*requests)

    assert all(r.status_code == 200 for r in responses)
    assert len({r.json()["conversation_id"] for r in responses}) == 1
    assert len(await repository.list_conversations_for_party("u1")) == 1


@pytest.mark.asyncio
async def test_concurrent_messages(client):
    """Test sending messages concurrently to the same conversation."""
    response = await client.post(
        "/conversations", json={"other_party_id": "u2", "topic_id": "p42"}, headers=as_party("u1")
    )
    conversation_id = response.json()["conversation_id"]

    responses = await asyncio.gather(
        *[
            client.post(
                f"/conversations/{conversation_id}/messages",
                json={"body": f"crate {i}"},
                headers=as_party("u1" if i % 2 else "u2"),
            )
            for i in range(20)
        ]
    )
    assert all(r.status_code == 200 for r in responses)

    response = await client.get(
        f"/conversations/{conversation_id}/messages", headers=as_party("u1")
    )
    history = response.json()
    assert len(history) == 20
    assert len({m["id"] for m in history}) == 20


@pytest.mark.asyncio
async def test_concurrent_error_handling(client):
    """Test error handling under concurrent load."""
    responses = await asyncio.gather(
        *[
            client.get(f"/conversations/{uuid4()}", headers=as_party("u1"))
            for _ in range(5)
        ]
    )
    assert all(r.status_code == 404 for r in responses)


@pytest.mark.asyncio
async def test_views_converge_under_slow_store(settings, eventually):
    """Interleaved sends from both sides end with identical, ordered views."""
    repository = InMemoryRepository(latency=0.001)
    buyer = ChatService(repository, StaticIdentityProvider("u1"), settings)
    farmer = ChatService(repository, StaticIdentityProvider("u2"), settings)
    conversation_id = await buyer.resolve_conversation("u2", "p42")

    async with ConversationView(buyer, conversation_id) as buyer_view, ConversationView(
        farmer, conversation_id
    ) as farmer_view:
        outcomes = await asyncio.gather(
            *[buyer_view.send(f"buyer {i}") for i in range(10)],
            *[farmer_view.send(f"farmer {i}") for i in range(10)],
        )
        assert all(outcome.ok for outcome in outcomes)

        await eventually(lambda: len(buyer_view.messages) == 20 and len(farmer_view.messages) == 20)
        stored = await repository.get_messages(conversation_id)
        assert [m.id for m in buyer_view.messages] == [m.id for m in stored]
        assert [m.id for m in farmer_view.messages] == [m.id for m in stored]
        assert buyer_view.reconciler.pending == []
        assert farmer_view.reconciler.pending == []
