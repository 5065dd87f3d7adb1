"""Domain models used by the outbox subsystem."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from payflow.infrastructure.persistence.models import MAX_PAYLOAD_BYTES, OutboxEventModel

_MAX_EVENT_TYPE_LENGTH = 96


@dataclass(slots=True)
class OutboxEvent:
    """Detached snapshot of an outbox row; safe to pass between threads."""

    event_id: str
    event_type: str
    payload: dict[str, Any]
    created_at: datetime
    delivered_at: datetime | None = None
    attempts: int = 0
    last_attempted_at: datetime | None = None
    last_error: str | None = None
    next_attempt_at: datetime | None = None

    def to_model(self) -> OutboxEventModel:
        """Convert the event into a SQLAlchemy persistence model."""

        if not self.event_type or len(self.event_type) > _MAX_EVENT_TYPE_LENGTH:
            raise ValueError("EVENT_TYPE_INVALID|event type must be 1-96 characters")
        if self.attempts < 0:
            raise ValueError("NEGATIVE_ATTEMPTS|attempt count must not be negative")
        try:
            payload_json = json.dumps(self.payload, ensure_ascii=False, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise ValueError("PAYLOAD_NOT_SERIALIZABLE|event payload must be JSON-serialisable") from exc
        if len(payload_json.encode("utf-8")) > MAX_PAYLOAD_BYTES:
            raise ValueError("PAYLOAD_TOO_LARGE|event payload exceeds the outbox size limit")
        return OutboxEventModel(
            id=self.event_id,
            event_type=self.event_type,
            payload_json=payload_json,
            created_at=self.created_at,
            delivered_at=self.delivered_at,
            attempts=self.attempts,
            last_attempted_at=self.last_attempted_at,
            last_error=self.last_error,
            next_attempt_at=self.next_attempt_at,
        )

    @classmethod
    def from_model(cls, model: OutboxEventModel) -> OutboxEvent:
        return cls(
            event_id=model.id,
            event_type=model.event_type,
            payload=json.loads(model.payload_json),
            created_at=model.created_at,
            delivered_at=model.delivered_at,
            attempts=model.attempts or 0,
            last_attempted_at=model.last_attempted_at,
            last_error=model.last_error,
            next_attempt_at=model.next_attempt_at,
        )

    def envelope(self) -> dict[str, Any]:
        """The document POSTed to every webhook endpoint."""

        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }

    def encode(self) -> bytes:
        """Canonical envelope bytes; the signature is computed over exactly these."""

        return json.dumps(
            self.envelope(),
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")

