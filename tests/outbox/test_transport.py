from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from payflow.messaging.errors import DeliveryError, DeliveryRejected, DeliveryTimeout
from payflow.messaging.outbox.models import OutboxEvent
from payflow.messaging.outbox.signing import SIGNATURE_HEADER, verify_signature
from payflow.messaging.outbox.transport import HttpxWebhookSender
from payflow.messaging.webhooks import WebhookEndpoint

ENDPOINT = WebhookEndpoint(
    id="we_1",
    url="https://merchant.example/hooks",
    secret="s3cr3t",
    is_enabled=True,
    created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
)
EVENT = OutboxEvent(
    event_id="evt_1",
    event_type="payment_intent.created",
    payload={"payment_intent": {"id": "pi_1", "amount": 100}},
    created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
)


def _sender(handler) -> HttpxWebhookSender:
    return HttpxWebhookSender(client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_posts_signed_canonical_envelope() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    _sender(handler).send(ENDPOINT, EVENT, attempt=3)

    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == ENDPOINT.url
    assert request.content == EVENT.encode()
    assert json.loads(request.content)["event_id"] == "evt_1"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["X-Payflow-Event-Id"] == "evt_1"
    assert request.headers["X-Payflow-Event-Type"] == "payment_intent.created"
    assert request.headers["X-Payflow-Delivery-Attempt"] == "3"
    assert verify_signature(ENDPOINT.secret, request.content, request.headers[SIGNATURE_HEADER])


@pytest.mark.parametrize("status", [301, 400, 410, 500, 503])
def test_non_success_status_is_rejected(status: int) -> None:
    sender = _sender(lambda request: httpx.Response(status))

    with pytest.raises(DeliveryRejected) as excinfo:
        sender.send(ENDPOINT, EVENT, attempt=1)

    assert excinfo.value.status_code == status
    assert excinfo.value.endpoint_id == "we_1"


def test_timeout_maps_to_delivery_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(DeliveryTimeout):
        _sender(handler).send(ENDPOINT, EVENT, attempt=1)


def test_connection_error_maps_to_delivery_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(DeliveryError) as excinfo:
        _sender(handler).send(ENDPOINT, EVENT, attempt=1)

    assert not isinstance(excinfo.value, DeliveryTimeout)
    assert "ConnectError" in str(excinfo.value)


class StalledBody(httpx.SyncByteStream):
    def __iter__(self):
        raise httpx.ReadTimeout("body never finished")


def test_response_body_is_not_awaited() -> None:
    sender = _sender(lambda request: httpx.Response(200, stream=StalledBody()))

    sender.send(ENDPOINT, EVENT, attempt=1)


def test_close_only_closes_an_owned_client() -> None:
    shared = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
    HttpxWebhookSender(client=shared).close()
    assert not shared.is_closed

    owned = HttpxWebhookSender()
    owned.close()
    assert owned._client.is_closed
