"""Error taxonomy for idempotent request handling and webhook delivery."""
from __future__ import annotations

from datetime import datetime


class MessagingError(Exception):
    """Base class; ``code`` is stable and safe to expose to clients."""

    code = "MESSAGING_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(f"{self.code}|{message}")
        self.message = message


class InvalidIdempotencyKey(MessagingError, ValueError):
    code = "IDEMPOTENCY_KEY_INVALID"


class KeyConflict(MessagingError):
    """The idempotency key was reused for a materially different request."""

    code = "IDEMPOTENCY_KEY_CONFLICT"

    def __init__(self, *, key: str, endpoint: str) -> None:
        super().__init__("idempotency key reused with a different request")
        self.key = key
        self.endpoint = endpoint


class TransientStoreError(MessagingError):
    """Lock contention or a lost race that outlived the local retry budget."""

    code = "STORE_TRANSIENT"


class UnitOfWorkError(RuntimeError):
    """Wraps unexpected transactional errors."""


class DeliveryError(MessagingError):
    """A single (event, endpoint) delivery did not succeed."""

    code = "DELIVERY_FAILED"

    def __init__(self, message: str, *, endpoint_id: str | None = None) -> None:
        super().__init__(message)
        self.endpoint_id = endpoint_id


class DeliveryTimeout(DeliveryError):
    code = "DELIVERY_TIMEOUT"


class DeliveryRejected(DeliveryError):
    """The endpoint answered with a non-success status."""

    code = "DELIVERY_REJECTED"

    def __init__(self, message: str, *, status_code: int, endpoint_id: str | None = None) -> None:
        super().__init__(message, endpoint_id=endpoint_id)
        self.status_code = status_code


class PermanentDeliveryFailure(MessagingError):
    """An event exhausted its attempts; it stays undelivered for operators."""

    code = "PERMANENT_DELIVERY_FAILURE"

    def __init__(
        self,
        *,
        event_id: str,
        event_type: str,
        attempts: int,
        last_error: str | None,
        failed_at: datetime,
    ) -> None:
        super().__init__(f"event {event_id} exhausted {attempts} delivery attempts")
        self.event_id = event_id
        self.event_type = event_type
        self.attempts = attempts
        self.last_error = last_error
        self.failed_at = failed_at


__all__ = [
    "DeliveryError",
    "DeliveryRejected",
    "DeliveryTimeout",
    "InvalidIdempotencyKey",
    "KeyConflict",
    "MessagingError",
    "PermanentDeliveryFailure",
    "TransientStoreError",
    "UnitOfWorkError",
]
