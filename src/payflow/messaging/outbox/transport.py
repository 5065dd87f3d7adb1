"""Outbound webhook transport."""
from __future__ import annotations

import logging
from typing import Protocol

import httpx

from payflow.messaging.errors import DeliveryError, DeliveryRejected, DeliveryTimeout
from payflow.messaging.webhooks import WebhookEndpoint

from .models import OutboxEvent
from .signing import SIGNATURE_HEADER, sign_payload


logger = logging.getLogger(__name__)


class WebhookSender(Protocol):
    """Transport contract: return on 2xx, raise ``DeliveryError`` otherwise."""

    def send(self, endpoint: WebhookEndpoint, event: OutboxEvent, *, attempt: int) -> None:
        """Deliver one event to one endpoint."""


def build_headers(endpoint: WebhookEndpoint, event: OutboxEvent, body: bytes, *, attempt: int) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Payflow-Event-Id": event.event_id,
        "X-Payflow-Event-Type": event.event_type,
        "X-Payflow-Delivery-Attempt": str(attempt),
        SIGNATURE_HEADER: sign_payload(endpoint.secret, body),
    }


class HttpxWebhookSender:
    """POST signed envelopes to webhook endpoints.

    ``timeout_seconds`` applies to each phase of a call (connect, write, each
    read and pool wait), not to the call as a whole. Only the status line and
    headers are awaited; the response body is never read, so an endpoint that
    trickles its body cannot hold the fan-out thread. ``httpx.Client`` is
    thread-safe, so one sender is shared by every fan-out thread of a relay.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 5.0,
        client: httpx.Client | None = None,
        user_agent: str = "payflow-webhooks/1.0",
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=False,
            headers={"User-Agent": user_agent},
        )

    def send(self, endpoint: WebhookEndpoint, event: OutboxEvent, *, attempt: int) -> None:
        body = event.encode()
        headers = build_headers(endpoint, event, body, attempt=attempt)
        try:
            with self._client.stream("POST", endpoint.url, content=body, headers=headers) as response:
                status_code = response.status_code
        except httpx.TimeoutException as exc:
            raise DeliveryTimeout(
                f"timed out delivering {event.event_id} to {endpoint.url}",
                endpoint_id=endpoint.id,
            ) from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(
                f"transport error delivering {event.event_id} to {endpoint.url}: {type(exc).__name__}",
                endpoint_id=endpoint.id,
            ) from exc

        if not httpx.codes.is_success(status_code):
            raise DeliveryRejected(
                f"endpoint {endpoint.url} answered HTTP {status_code}",
                status_code=status_code,
                endpoint_id=endpoint.id,
            )
        logger.debug(
            "webhook delivered",
            extra={"code": "WEBHOOK_DELIVERED", "event_id": event.event_id, "endpoint_id": endpoint.id},
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpxWebhookSender:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
