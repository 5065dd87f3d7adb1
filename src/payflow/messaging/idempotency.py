"""Idempotent request handling keyed by client-supplied idempotency keys."""
from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payflow.core.clock import Clock
from payflow.infrastructure.monitoring.metrics import MessagingMetrics
from payflow.infrastructure.persistence.models import IdempotencyRecordModel

from .errors import InvalidIdempotencyKey, KeyConflict
from .uow import UnitOfWork, UnitOfWorkFactory, run_in_transaction


logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255
_PENDING_BODY = "{}"
_PENDING_STATUS = 0


def normalize_payload(payload: Any) -> str:
    """Convert payload into a deterministic JSON string."""

    def _default(obj: Any) -> Any:
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        if isinstance(obj, bytes):
            return obj.decode("utf-8", errors="replace")
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        raise TypeError(f"unsupported type for canonical payload: {type(obj)!r}")

    return json.dumps(
        payload,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=_default,
    )


def request_hash(request_body: Any) -> str:
    """SHA-256 of the canonical request.

    Raw bodies that parse as JSON are hashed by content, so key order and
    whitespace never turn a retry into a conflict. Anything else is hashed
    byte for byte.
    """

    if isinstance(request_body, (bytes, bytearray)):
        raw = bytes(request_body)
        try:
            material = normalize_payload(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return hashlib.sha256(raw).hexdigest()
    elif isinstance(request_body, str):
        try:
            material = normalize_payload(json.loads(request_body))
        except json.JSONDecodeError:
            material = request_body
    else:
        material = normalize_payload(request_body)
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def validate_key(key: str | None) -> str:
    if key is None or not key.strip():
        raise InvalidIdempotencyKey("idempotency key must not be blank")
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidIdempotencyKey(f"idempotency key exceeds {MAX_KEY_LENGTH} characters")
    return key


@dataclass(frozen=True)
class OperationResult:
    """What a guarded operation produced; persisted verbatim for replays."""

    body: dict[str, Any]
    status_code: int = 200
    resource_id: str | None = None


@dataclass(frozen=True)
class IdempotentResponse:
    body: dict[str, Any]
    status_code: int
    resource_id: str | None = None
    replayed: bool = False


Operation = Callable[[UnitOfWork], OperationResult]


class IdempotencyRepository:
    """Reads and inserts idempotency records inside a transaction."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, key: str, endpoint: str) -> IdempotencyRecordModel | None:
        stmt = select(IdempotencyRecordModel).where(
            IdempotencyRecordModel.key == key,
            IdempotencyRecordModel.endpoint == endpoint,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def add(self, record: IdempotencyRecordModel) -> None:
        self._session.add(record)
        self._session.flush()


@dataclass
class IdempotencyGuard:
    """Run an operation at most once per (key, endpoint) and replay its response."""

    uow_factory: UnitOfWorkFactory
    clock: Clock
    metrics: MessagingMetrics | None = None
    max_retries: int = 3
    retry_base_seconds: float = 0.05
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def execute(
        self,
        *,
        key: str,
        endpoint: str,
        request_body: Any,
        operation: Operation,
    ) -> IdempotentResponse:
        validate_key(key)
        digest = request_hash(request_body)

        def work(uow: UnitOfWork) -> IdempotentResponse:
            return self._execute_once(uow, key=key, endpoint=endpoint, digest=digest, operation=operation)

        return run_in_transaction(
            self.uow_factory,
            work,
            max_retries=self.max_retries,
            base_delay=self.retry_base_seconds,
            sleep=self.sleep,
        )

    def _execute_once(
        self,
        uow: UnitOfWork,
        *,
        key: str,
        endpoint: str,
        digest: str,
        operation: Operation,
    ) -> IdempotentResponse:
        repo = IdempotencyRepository(uow.session)

        existing = repo.get(key, endpoint)
        if existing is not None:
            return self._replay(existing, key=key, endpoint=endpoint, digest=digest)

        # reserve the key before running the operation; the placeholder is
        # filled in below and only ever committed together with the result
        record = IdempotencyRecordModel(
            key=key,
            endpoint=endpoint,
            request_hash=digest,
            response_body=_PENDING_BODY,
            response_status=_PENDING_STATUS,
            created_at=self.clock.now(),
        )
        try:
            repo.add(record)
        except IntegrityError:
            # a concurrent request with the same key committed first
            uow.rollback()
            existing = repo.get(key, endpoint)
            if existing is None:
                raise
            logger.info(
                "idempotency race lost; converging on the stored response",
                extra={"code": "IDEMPOTENCY_RACE_LOST", "endpoint": endpoint},
            )
            return self._replay(existing, key=key, endpoint=endpoint, digest=digest)

        result = operation(uow)
        record.response_body = normalize_payload(result.body)
        record.response_status = result.status_code
        record.resource_id = result.resource_id
        uow.session.flush()

        self._count(endpoint, "executed")
        logger.info(
            "guarded operation executed",
            extra={"code": "IDEMPOTENCY_EXECUTED", "endpoint": endpoint, "resource_id": result.resource_id},
        )
        return IdempotentResponse(
            body=result.body,
            status_code=result.status_code,
            resource_id=result.resource_id,
        )

    def _replay(
        self,
        record: IdempotencyRecordModel,
        *,
        key: str,
        endpoint: str,
        digest: str,
    ) -> IdempotentResponse:
        if record.request_hash != digest:
            self._count(endpoint, "conflict")
            logger.warning(
                "idempotency key reused with a different request",
                extra={"code": KeyConflict.code, "endpoint": endpoint},
            )
            raise KeyConflict(key=key, endpoint=endpoint)
        self._count(endpoint, "replayed")
        return IdempotentResponse(
            body=json.loads(record.response_body),
            status_code=record.response_status,
            resource_id=record.resource_id,
            replayed=True,
        )

    def _count(self, endpoint: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.idempotency_requests.labels(endpoint=endpoint, outcome=outcome).inc()


__all__ = [
    "IdempotencyGuard",
    "IdempotencyRepository",
    "IdempotentResponse",
    "Operation",
    "OperationResult",
    "normalize_payload",
    "request_hash",
    "validate_key",
]
