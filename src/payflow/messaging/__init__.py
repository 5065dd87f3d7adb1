"""Idempotent request handling and reliable event delivery."""
from .errors import (
    DeliveryError,
    DeliveryRejected,
    DeliveryTimeout,
    InvalidIdempotencyKey,
    KeyConflict,
    MessagingError,
    PermanentDeliveryFailure,
    TransientStoreError,
    UnitOfWorkError,
)
from .idempotency import IdempotencyGuard, IdempotentResponse, OperationResult, request_hash
from .uow import SQLAlchemyUnitOfWork, UnitOfWork, run_in_transaction, sqlalchemy_uow_factory

__all__ = [
    "DeliveryError",
    "DeliveryRejected",
    "DeliveryTimeout",
    "IdempotencyGuard",
    "IdempotentResponse",
    "InvalidIdempotencyKey",
    "KeyConflict",
    "MessagingError",
    "OperationResult",
    "PermanentDeliveryFailure",
    "SQLAlchemyUnitOfWork",
    "TransientStoreError",
    "UnitOfWork",
    "UnitOfWorkError",
    "request_hash",
    "run_in_transaction",
    "sqlalchemy_uow_factory",
]
