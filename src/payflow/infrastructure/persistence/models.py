# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator


Base = declarative_base()

MAX_PAYLOAD_BYTES = 32768


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    SQLite drops the offset on write, so values are normalised to UTC before
    binding and naive values coming back are tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class PaymentIntentModel(Base):
    __tablename__ = "payment_intents"

    id = Column(String(36), primary_key=True, default=_new_id)
    amount = Column(BigInteger, nullable=False)
    currency = Column(String(16), nullable=False)
    status = Column(
        Enum("requires_confirmation", "succeeded", name="payment_intent_status", native_enum=False),
        nullable=False,
        default="requires_confirmation",
    )
    created_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (CheckConstraint("amount > 0", name="ck_payment_intent_amount_positive"),)


class IdempotencyRecordModel(Base):
    """Stored response for a (key, endpoint) pair; the primary key arbitrates races."""

    __tablename__ = "idempotency_records"

    key = Column(String(255), nullable=False)
    endpoint = Column(String(128), nullable=False)
    request_hash = Column(String(64), nullable=False)
    response_body = Column(Text, nullable=False)
    response_status = Column(Integer, nullable=False, default=200)
    resource_id = Column(String(36), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (PrimaryKeyConstraint("key", "endpoint", name="pk_idempotency_records"),)


class OutboxEventModel(Base):
    """Outbox rows written atomically with the business mutation that caused them."""

    __tablename__ = "outbox_events"

    id = Column(String(36), primary_key=True, default=_new_id)
    event_type = Column(String(96), nullable=False)
    payload_json = Column(Text, nullable=False)
    created_at = Column(UTCDateTime(), nullable=False)
    delivered_at = Column(UTCDateTime(), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempted_at = Column(UTCDateTime(), nullable=True)
    last_error = Column(String(256), nullable=True)
    next_attempt_at = Column(UTCDateTime(), nullable=True)
    claim_token = Column(String(96), nullable=True)
    claim_expires_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint(f"length(payload_json) <= {MAX_PAYLOAD_BYTES}", name="ck_outbox_payload_size"),
        CheckConstraint("attempts >= 0", name="ck_outbox_attempts_non_negative"),
        Index("ix_outbox_events_created_at", "created_at"),
        Index("ix_outbox_events_delivered_at", "delivered_at"),
        Index("ix_outbox_events_next_attempt_at", "next_attempt_at"),
    )


class WebhookEndpointModel(Base):
    __tablename__ = "webhook_endpoints"

    id = Column(String(36), primary_key=True, default=_new_id)
    url = Column(String(2048), nullable=False)
    secret = Column(String(128), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("ix_webhook_endpoints_enabled", "is_enabled"),
        Index("ix_webhook_endpoints_created_at", "created_at"),
    )


__all__ = [
    "Base",
    "IdempotencyRecordModel",
    "MAX_PAYLOAD_BYTES",
    "OutboxEventModel",
    "PaymentIntentModel",
    "UTCDateTime",
    "WebhookEndpointModel",
]
