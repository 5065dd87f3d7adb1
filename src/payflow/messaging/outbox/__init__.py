"""Transactional outbox: writer, relay and webhook transport."""
from .backoff import BackoffPolicy
from .models import OutboxEvent
from .relay import AlertHook, OutboxRelay, RelayCycleReport
from .repository import OutboxRepository
from .signing import SIGNATURE_HEADER, sign_payload, verify_signature
from .transport import HttpxWebhookSender, WebhookSender, build_headers
from .writer import OutboxWriter, append_event

__all__ = [
    "AlertHook",
    "BackoffPolicy",
    "HttpxWebhookSender",
    "OutboxEvent",
    "OutboxRelay",
    "OutboxRepository",
    "OutboxWriter",
    "RelayCycleReport",
    "SIGNATURE_HEADER",
    "WebhookSender",
    "append_event",
    "build_headers",
    "sign_payload",
    "verify_signature",
]
