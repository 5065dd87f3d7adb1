"""Persistence helpers for outbox events."""
from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from payflow.infrastructure.persistence.models import OutboxEventModel

from .models import OutboxEvent


class OutboxRepository:
    """Repository for accessing outbox rows inside a transaction.

    Every relay-side mutation is a conditional UPDATE on the claim token, so a
    worker whose lease expired and was taken over can no longer change the row.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, event: OutboxEvent) -> None:
        self._session.add(event.to_model())
        self._session.flush()

    def get(self, event_id: str) -> OutboxEvent | None:
        model = self._session.get(OutboxEventModel, event_id)
        if model is None:
            return None
        return OutboxEvent.from_model(model)

    def list_claimable(self, *, now: datetime, max_attempts: int, limit: int) -> Sequence[OutboxEventModel]:
        stmt = (
            select(OutboxEventModel)
            .where(
                OutboxEventModel.delivered_at.is_(None),
                OutboxEventModel.attempts < max_attempts,
                or_(
                    OutboxEventModel.next_attempt_at.is_(None),
                    OutboxEventModel.next_attempt_at <= now,
                ),
                or_(
                    OutboxEventModel.claim_token.is_(None),
                    OutboxEventModel.claim_expires_at <= now,
                ),
            )
            .order_by(OutboxEventModel.created_at, OutboxEventModel.id)
            .limit(limit)
        )
        return self._session.execute(stmt).scalars().all()

    def try_claim(self, event_id: str, *, token: str, now: datetime, expires_at: datetime) -> bool:
        stmt = (
            update(OutboxEventModel)
            .where(
                OutboxEventModel.id == event_id,
                OutboxEventModel.delivered_at.is_(None),
                or_(
                    OutboxEventModel.claim_token.is_(None),
                    OutboxEventModel.claim_expires_at <= now,
                ),
            )
            .values(claim_token=token, claim_expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def mark_delivered(self, event_id: str, *, token: str, delivered_at: datetime) -> bool:
        stmt = (
            update(OutboxEventModel)
            .where(
                OutboxEventModel.id == event_id,
                OutboxEventModel.claim_token == token,
                OutboxEventModel.delivered_at.is_(None),
            )
            .values(
                delivered_at=delivered_at,
                last_error=None,
                next_attempt_at=None,
                claim_token=None,
                claim_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def extend_claims(self, *, token: str, expires_at: datetime) -> set[str]:
        """Push out the lease on every row still held under ``token``; return their ids."""

        stmt = (
            update(OutboxEventModel)
            .where(
                OutboxEventModel.claim_token == token,
                OutboxEventModel.delivered_at.is_(None),
            )
            .values(claim_expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        self._session.execute(stmt)
        held = select(OutboxEventModel.id).where(OutboxEventModel.claim_token == token)
        return set(self._session.execute(held).scalars())

    def record_failure(self, event_id: str, *, token: str, attempted_at: datetime, error: str) -> int | None:
        """Count one failed cycle and release the claim; ``None`` if the claim was lost."""

        stmt = (
            update(OutboxEventModel)
            .where(
                OutboxEventModel.id == event_id,
                OutboxEventModel.claim_token == token,
                OutboxEventModel.delivered_at.is_(None),
            )
            .values(
                attempts=OutboxEventModel.attempts + 1,
                last_attempted_at=attempted_at,
                last_error=error[:256],
                claim_token=None,
                claim_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if self._session.execute(stmt).rowcount != 1:
            return None
        return self._session.execute(
            select(OutboxEventModel.attempts).where(OutboxEventModel.id == event_id)
        ).scalar_one()

    def schedule_retry(self, event_id: str, *, next_attempt_at: datetime | None) -> None:
        stmt = (
            update(OutboxEventModel)
            .where(OutboxEventModel.id == event_id, OutboxEventModel.delivered_at.is_(None))
            .values(next_attempt_at=next_attempt_at)
            .execution_options(synchronize_session=False)
        )
        self._session.execute(stmt)

    def release(self, event_id: str, *, token: str) -> bool:
        stmt = (
            update(OutboxEventModel)
            .where(OutboxEventModel.id == event_id, OutboxEventModel.claim_token == token)
            .values(claim_token=None, claim_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def release_owned(self, *, owner: str) -> int:
        """Release every claim whose token was issued to ``owner``."""

        stmt = (
            update(OutboxEventModel)
            .where(
                OutboxEventModel.claim_token.startswith(f"{owner}:", autoescape=True),
                OutboxEventModel.delivered_at.is_(None),
            )
            .values(claim_token=None, claim_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount

    def list_permanent_failures(self, *, max_attempts: int, limit: int = 100) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEventModel)
            .where(
                OutboxEventModel.delivered_at.is_(None),
                OutboxEventModel.attempts >= max_attempts,
            )
            .order_by(OutboxEventModel.created_at, OutboxEventModel.id)
            .limit(limit)
        )
        return [OutboxEvent.from_model(model) for model in self._session.execute(stmt).scalars()]

    def requeue(self, event_id: str) -> bool:
        """Give a permanently failed event a fresh attempt budget."""

        stmt = (
            update(OutboxEventModel)
            .where(OutboxEventModel.id == event_id, OutboxEventModel.delivered_at.is_(None))
            .values(
                attempts=0,
                last_attempted_at=None,
                last_error=None,
                next_attempt_at=None,
                claim_token=None,
                claim_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1
