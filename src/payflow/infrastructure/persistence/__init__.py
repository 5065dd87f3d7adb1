"""SQLAlchemy models and session helpers."""
from .models import (
    Base,
    IdempotencyRecordModel,
    OutboxEventModel,
    PaymentIntentModel,
    WebhookEndpointModel,
)
from .session import create_schema, make_engine, make_session_factory

__all__ = [
    "Base",
    "IdempotencyRecordModel",
    "OutboxEventModel",
    "PaymentIntentModel",
    "WebhookEndpointModel",
    "create_schema",
    "make_engine",
    "make_session_factory",
]
