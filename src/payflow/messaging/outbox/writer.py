"""Append events to the outbox inside the caller's transaction."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from payflow.core.clock import Clock, SystemClock

from .models import OutboxEvent
from .repository import OutboxRepository


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OutboxWriter:
    """Stage an event next to a business mutation.

    The writer never commits: the row becomes visible exactly when the
    caller's transaction does, and disappears with it on rollback.
    """

    clock: Clock = field(default_factory=SystemClock)

    def append(self, session: Session, event_type: str, payload: dict[str, Any]) -> str:
        event_id = str(uuid4())
        event = OutboxEvent(
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            created_at=self.clock.now(),
        )
        OutboxRepository(session).add(event)
        logger.debug(
            "outbox event staged",
            extra={"code": "OUTBOX_APPENDED", "event_id": event_id, "event_type": event_type},
        )
        return event_id


def append_event(
    session: Session,
    event_type: str,
    payload: dict[str, Any],
    *,
    clock: Clock | None = None,
) -> str:
    """Functional shortcut for :meth:`OutboxWriter.append`."""

    return OutboxWriter(clock=clock or SystemClock()).append(session, event_type, payload)
