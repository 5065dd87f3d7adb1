from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from payflow.infrastructure.persistence.models import OutboxEventModel, PaymentIntentModel
from payflow.messaging.errors import KeyConflict
from payflow.messaging.idempotency import IdempotencyGuard
from payflow.payments.service import (
    InvalidPaymentIntentState,
    PaymentIntentNotFound,
    PaymentIntentService,
    PaymentValidationError,
)


@pytest.fixture()
def service(uow_factory, clock, metrics) -> PaymentIntentService:
    guard = IdempotencyGuard(uow_factory=uow_factory, clock=clock, metrics=metrics, sleep=lambda _: None)
    return PaymentIntentService(uow_factory=uow_factory, guard=guard, clock=clock)


def _events(session_factory) -> list[tuple[str, dict]]:
    with session_factory() as session:
        rows = session.execute(select(OutboxEventModel).order_by(OutboxEventModel.created_at)).scalars().all()
        return [(row.event_type, json.loads(row.payload_json)) for row in rows]


def _intent_count(session_factory) -> int:
    with session_factory() as session:
        return len(session.execute(select(PaymentIntentModel.id)).all())


def test_create_stages_created_event(service, session_factory) -> None:
    result = service.create_payment_intent(1000, "gbp")

    assert result.status_code == 201
    assert result.replayed is False
    assert result.intent["status"] == "requires_confirmation"
    assert result.intent["amount"] == 1000
    assert _events(session_factory) == [("payment_intent.created", {"payment_intent": result.intent})]


@pytest.mark.parametrize(
    ("amount", "currency", "message"),
    [
        (0, "gbp", "amount must be > 0"),
        (-5, "gbp", "amount must be > 0"),
        (True, "gbp", "amount must be > 0"),
        (100, "   ", "currency is required"),
        (100, "", "currency is required"),
    ],
)
def test_create_validates_input(service, session_factory, amount, currency, message) -> None:
    with pytest.raises(PaymentValidationError) as excinfo:
        service.create_payment_intent(amount, currency, idempotency_key="k1")

    assert excinfo.value.message == message
    assert _intent_count(session_factory) == 0


def test_idempotent_create_replays_same_intent(service, session_factory) -> None:
    first = service.create_payment_intent(1000, "gbp", idempotency_key="k1")
    second = service.create_payment_intent(1000, " GBP ", idempotency_key="k1")

    assert second.replayed is True
    assert second.status_code == 201
    assert second.intent == first.intent
    assert _intent_count(session_factory) == 1
    assert len(_events(session_factory)) == 1


def test_idempotent_create_with_changed_amount_conflicts(service, session_factory) -> None:
    service.create_payment_intent(1000, "gbp", idempotency_key="k1")

    with pytest.raises(KeyConflict):
        service.create_payment_intent(2000, "gbp", idempotency_key="k1")

    assert _intent_count(session_factory) == 1


def test_creates_without_key_are_independent(service, session_factory) -> None:
    service.create_payment_intent(1000, "gbp")
    service.create_payment_intent(1000, "gbp")

    assert _intent_count(session_factory) == 2


def test_get_payment_intent(service) -> None:
    created = service.create_payment_intent(250, "eur")

    intent = service.get_payment_intent(created.intent["id"])

    assert intent.as_dict() == created.intent
    with pytest.raises(PaymentIntentNotFound):
        service.get_payment_intent("missing")


def test_confirm_transitions_once_and_emits_succeeded(service, session_factory, clock) -> None:
    created = service.create_payment_intent(250, "eur")
    clock.advance(1)
    intent_id = created.intent["id"]

    confirmed = service.confirm_payment_intent(intent_id)

    assert confirmed.status == "succeeded"
    assert service.get_payment_intent(intent_id).status == "succeeded"
    event_types = [event_type for event_type, _ in _events(session_factory)]
    assert event_types == ["payment_intent.created", "payment_intent.succeeded"]
    assert _events(session_factory)[1][1] == {"payment_intent": confirmed.as_dict()}

    with pytest.raises(InvalidPaymentIntentState) as excinfo:
        service.confirm_payment_intent(intent_id)
    assert str(excinfo.value) == "cannot confirm payment_intent in status 'succeeded'"
    assert len(_events(session_factory)) == 2


def test_confirm_missing_intent(service, session_factory) -> None:
    with pytest.raises(PaymentIntentNotFound):
        service.confirm_payment_intent("missing")
    assert _events(session_factory) == []
