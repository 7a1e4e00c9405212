"""Tests for the client-side message reconciler."""

import itertools
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from farmstand_chat.client.reconciler import MessageReconciler
from farmstand_chat.domain.models import Message

T0 = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)
CONVERSATION_ID = uuid4()


def _message(seconds, sender="u2", body=None, message_id=None):
    return Message(
        id=message_id or uuid4(),
        conversation_id=CONVERSATION_ID,
        sender_id=sender,
        body=body or f"at {seconds}",
        created_at=T0 + timedelta(seconds=seconds),
    )


@pytest.fixture
def reconciler():
    return MessageReconciler(CONVERSATION_ID, current_party="u1")


@pytest.mark.parametrize(
    "sources",
    [
        ("local", "remote"),
        ("remote", "local"),
        ("remote", "remote", "local"),
        ("local", "local", "remote", "remote"),
    ],
)
def test_duplicate_delivery_yields_one_entry(reconciler, sources):
    message = _message(1, sender="u1")
    for source in sources:
        if source == "local":
            reconciler.local_send_accepted(message)
        else:
            reconciler.remote_event(message)
    assert reconciler.messages == [message]


def test_out_of_order_arrival_is_sorted(reconciler):
    t1, t2, t3 = _message(1), _message(2), _message(3)
    for message in (t2, t1, t3):
        reconciler.remote_event(message)
    assert reconciler.messages == [t1, t2, t3]


def test_merge_is_order_independent():
    messages = [_message(s) for s in (3, 1, 2, 2)]
    results = set()
    for permutation in itertools.permutations(messages + messages[:2]):
        reconciler = MessageReconciler(CONVERSATION_ID, "u1")
        for message in permutation:
            reconciler.merge(message)
        results.add(tuple(m.id for m in reconciler.messages))
    assert len(results) == 1


def test_equal_timestamps_break_ties_by_id(reconciler):
    low = _message(5, message_id=UUID(int=1))
    high = _message(5, message_id=UUID(int=2))
    reconciler.remote_event(high)
    reconciler.remote_event(low)
    assert reconciler.messages == [low, high]


def test_foreign_conversation_is_ignored(reconciler):
    stray = Message(conversation_id=uuid4(), sender_id="u2", body="wrong room")
    assert not reconciler.merge(stray)
    assert reconciler.messages == []


def test_acknowledgment_resolves_placeholder(reconciler):
    pending = reconciler.begin_send("Is this still available?")
    assert reconciler.rendered() == [pending]

    message = _message(1, sender="u1", body="Is this still available?")
    assert reconciler.local_send_accepted(message, pending)

    assert reconciler.pending == []
    assert reconciler.rendered() == [message]
    assert pending.message_id == message.id


def test_realtime_event_can_arrive_before_acknowledgment(reconciler):
    pending = reconciler.begin_send("hello")
    message = _message(1, sender="u1", body="hello")

    reconciler.remote_event(message)
    assert reconciler.pending == []
    assert reconciler.rendered() == [message]

    assert not reconciler.local_send_accepted(message, pending)
    assert reconciler.messages == [message]


def test_own_events_resolve_placeholders_in_send_order(reconciler):
    first = reconciler.begin_send("one")
    second = reconciler.begin_send("two")
    assert (first.local_seq, second.local_seq) == (0, 1)

    reconciler.remote_event(_message(1, sender="u1", body="one"))
    assert reconciler.pending == [second]

    reconciler.remote_event(_message(2, sender="u2", body="from the farmer"))
    assert reconciler.pending == [second]


def test_failed_send_returns_draft_and_inserts_nothing(reconciler):
    pending = reconciler.begin_send("need 5 kg")
    draft = reconciler.fail_send(pending)
    assert draft == "need 5 kg"
    assert reconciler.rendered() == []
    assert len(reconciler) == 0


def test_load_counts_new_messages(reconciler):
    history = [_message(1), _message(2)]
    assert reconciler.load(history) == 2
    assert reconciler.load(history + [_message(3)]) == 1
    assert len(reconciler) == 3
