from __future__ import annotations

import string

import pytest

from payflow.messaging.webhooks import (
    SECRET_LENGTH,
    WebhookEndpointNotFound,
    WebhookEndpointService,
    WebhookValidationError,
)


@pytest.fixture()
def service(uow_factory, clock) -> WebhookEndpointService:
    return WebhookEndpointService(uow_factory=uow_factory, clock=clock)


def test_create_generates_alphanumeric_secret(service) -> None:
    endpoint = service.create_endpoint("  https://merchant.example/hooks ")

    assert endpoint.url == "https://merchant.example/hooks"
    assert endpoint.is_enabled is True
    assert len(endpoint.secret) == SECRET_LENGTH
    assert set(endpoint.secret) <= set(string.ascii_letters + string.digits)
    assert "secret" not in endpoint.public_view()


def test_blank_url_rejected(service) -> None:
    with pytest.raises(WebhookValidationError, match="url is required"):
        service.create_endpoint("   ")


def test_list_is_newest_first(service, clock) -> None:
    older = service.create_endpoint("https://a.example")
    clock.advance(1)
    newer = service.create_endpoint("https://b.example")

    assert [endpoint.id for endpoint in service.list_endpoints()] == [newer.id, older.id]


def test_toggle_controls_enabled_snapshot(service) -> None:
    endpoint = service.create_endpoint("https://a.example")

    disabled = service.set_enabled(endpoint.id, False)
    assert disabled.is_enabled is False
    assert service.list_enabled() == []

    service.set_enabled(endpoint.id, True)
    assert [item.id for item in service.list_enabled()] == [endpoint.id]


def test_toggle_unknown_endpoint(service) -> None:
    with pytest.raises(WebhookEndpointNotFound):
        service.set_enabled("missing", True)
