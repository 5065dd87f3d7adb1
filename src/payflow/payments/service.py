"""Payment intent lifecycle with outbox events in the same transaction."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from sqlalchemy import update

from payflow.core.clock import Clock
from payflow.infrastructure.persistence.models import PaymentIntentModel
from payflow.messaging.idempotency import IdempotencyGuard, IdempotentResponse, OperationResult
from payflow.messaging.outbox.writer import OutboxWriter
from payflow.messaging.uow import UnitOfWork, UnitOfWorkFactory, run_in_transaction


logger = logging.getLogger(__name__)

CREATE_ENDPOINT = "POST /v1/payment_intents"
EVENT_CREATED = "payment_intent.created"
EVENT_SUCCEEDED = "payment_intent.succeeded"

STATUS_REQUIRES_CONFIRMATION = "requires_confirmation"
STATUS_SUCCEEDED = "succeeded"


class PaymentValidationError(ValueError):
    code = "PAYMENT_VALIDATION_FAILED"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PaymentIntentNotFound(LookupError):
    code = "PAYMENT_INTENT_NOT_FOUND"


class InvalidPaymentIntentState(RuntimeError):
    code = "PAYMENT_INTENT_INVALID_STATE"

    def __init__(self, status: str) -> None:
        super().__init__(f"cannot confirm payment_intent in status '{status}'")
        self.status = status


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    amount: int
    currency: str
    status: str

    @classmethod
    def from_model(cls, model: PaymentIntentModel) -> PaymentIntent:
        return cls(id=model.id, amount=model.amount, currency=model.currency, status=model.status)

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "amount": self.amount, "currency": self.currency, "status": self.status}


@dataclass(frozen=True)
class CreateResult:
    intent: dict[str, Any]
    status_code: int
    replayed: bool = False


def validate_request(amount: Any, currency: Any) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise PaymentValidationError("amount must be > 0")
    if not isinstance(currency, str) or not currency.strip():
        raise PaymentValidationError("currency is required")


def fingerprint(amount: int, currency: str) -> dict[str, Any]:
    """Fields that decide whether a retried create is the same request."""

    return {"amount": amount, "currency": currency.strip().lower()}


class PaymentIntentService:
    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        guard: IdempotencyGuard,
        clock: Clock,
        max_retries: int = 3,
    ) -> None:
        self._uow_factory = uow_factory
        self._guard = guard
        self._clock = clock
        self._writer = OutboxWriter(clock=clock)
        self._max_retries = max_retries

    def create_payment_intent(
        self,
        amount: Any,
        currency: Any,
        *,
        idempotency_key: str | None = None,
    ) -> CreateResult:
        validate_request(amount, currency)

        def operation(uow: UnitOfWork) -> OperationResult:
            intent = self._insert(uow, amount, currency)
            return OperationResult(body=intent.as_dict(), status_code=201, resource_id=intent.id)

        if idempotency_key is None:
            result = run_in_transaction(self._uow_factory, operation, max_retries=self._max_retries)
            return CreateResult(intent=result.body, status_code=result.status_code)

        response: IdempotentResponse = self._guard.execute(
            key=idempotency_key,
            endpoint=CREATE_ENDPOINT,
            request_body=fingerprint(amount, currency),
            operation=operation,
        )
        return CreateResult(intent=response.body, status_code=response.status_code, replayed=response.replayed)

    def get_payment_intent(self, intent_id: str) -> PaymentIntent:
        with self._uow_factory() as uow:
            model = uow.session.get(PaymentIntentModel, intent_id)
            if model is None:
                raise PaymentIntentNotFound(f"payment_intent {intent_id} not found")
            return PaymentIntent.from_model(model)

    def confirm_payment_intent(self, intent_id: str) -> PaymentIntent:
        def work(uow: UnitOfWork) -> PaymentIntent:
            session = uow.session
            changed = session.execute(
                update(PaymentIntentModel)
                .where(
                    PaymentIntentModel.id == intent_id,
                    PaymentIntentModel.status == STATUS_REQUIRES_CONFIRMATION,
                )
                .values(status=STATUS_SUCCEEDED)
                .execution_options(synchronize_session=False)
            ).rowcount
            model = session.get(PaymentIntentModel, intent_id)
            if model is None:
                raise PaymentIntentNotFound(f"payment_intent {intent_id} not found")
            if changed != 1:
                raise InvalidPaymentIntentState(model.status)
            intent = PaymentIntent.from_model(model)
            self._writer.append(session, EVENT_SUCCEEDED, {"payment_intent": intent.as_dict()})
            return intent

        intent = run_in_transaction(self._uow_factory, work, max_retries=self._max_retries)
        logger.info("payment intent confirmed", extra={"code": "PAYMENT_INTENT_CONFIRMED", "intent_id": intent_id})
        return intent

    def _insert(self, uow: UnitOfWork, amount: int, currency: str) -> PaymentIntent:
        intent = PaymentIntent(
            id=str(uuid4()),
            amount=amount,
            currency=currency,
            status=STATUS_REQUIRES_CONFIRMATION,
        )
        uow.session.add(
            PaymentIntentModel(
                id=intent.id,
                amount=intent.amount,
                currency=intent.currency,
                status=intent.status,
                created_at=self._clock.now(),
            )
        )
        uow.session.flush()
        self._writer.append(uow.session, EVENT_CREATED, {"payment_intent": intent.as_dict()})
        logger.debug("payment intent staged", extra={"code": "PAYMENT_INTENT_STAGED", "intent_id": intent.id})
        return intent
