from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from payflow.infrastructure.persistence.models import MAX_PAYLOAD_BYTES, OutboxEventModel
from payflow.messaging.outbox.repository import OutboxRepository
from payflow.messaging.outbox.writer import OutboxWriter, append_event


def _count(session_factory) -> int:
    with session_factory() as session:
        return session.execute(select(func.count()).select_from(OutboxEventModel)).scalar_one()


def test_event_visible_only_after_commit(uow_factory, session_factory, clock) -> None:
    writer = OutboxWriter(clock=clock)

    with uow_factory() as uow:
        event_id = writer.append(uow.session, "payment_intent.created", {"payment_intent": {"id": "pi_1"}})
        assert _count(session_factory) == 0

    with session_factory() as session:
        event = OutboxRepository(session).get(event_id)
    assert event is not None
    assert event.event_type == "payment_intent.created"
    assert event.payload == {"payment_intent": {"id": "pi_1"}}
    assert event.created_at == clock.now()
    assert event.attempts == 0
    assert event.delivered_at is None


def test_rollback_discards_event(uow_factory, session_factory, clock) -> None:
    with pytest.raises(RuntimeError):
        with uow_factory() as uow:
            append_event(uow.session, "payment_intent.created", {"id": "pi_1"}, clock=clock)
            raise RuntimeError("mutation failed")

    assert _count(session_factory) == 0


def test_each_append_gets_a_fresh_id(uow_factory, clock) -> None:
    writer = OutboxWriter(clock=clock)
    with uow_factory() as uow:
        ids = {writer.append(uow.session, "thing.happened", {"n": n}) for n in range(5)}
    assert len(ids) == 5


@pytest.mark.parametrize(
    ("event_type", "payload", "code"),
    [
        ("", {}, "EVENT_TYPE_INVALID"),
        ("x" * 97, {}, "EVENT_TYPE_INVALID"),
        ("thing.happened", {"blob": "x" * MAX_PAYLOAD_BYTES}, "PAYLOAD_TOO_LARGE"),
        ("thing.happened", {"bad": object()}, "PAYLOAD_NOT_SERIALIZABLE"),
    ],
)
def test_invalid_events_rejected(uow_factory, clock, event_type, payload, code) -> None:
    with pytest.raises(ValueError, match=code):
        with uow_factory() as uow:
            OutboxWriter(clock=clock).append(uow.session, event_type, payload)


def test_envelope_encoding_is_canonical(uow_factory, session_factory, clock) -> None:
    with uow_factory() as uow:
        event_id = OutboxWriter(clock=clock).append(uow.session, "thing.happened", {"b": 2, "a": 1})

    with session_factory() as session:
        event = OutboxRepository(session).get(event_id)
    body = event.encode()

    assert json.loads(body) == {
        "event_id": event_id,
        "event_type": "thing.happened",
        "payload": {"a": 1, "b": 2},
        "created_at": clock.now().isoformat(),
    }
    assert b" " not in body
    assert body.index(b'"created_at"') < body.index(b'"event_id"') < body.index(b'"payload"')
