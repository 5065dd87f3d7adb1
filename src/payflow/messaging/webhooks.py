"""Webhook endpoint registry.

Endpoints are created and toggled administratively; the relay only ever
reads a snapshot of the enabled set at the start of a cycle.
"""
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from payflow.core.clock import Clock
from payflow.infrastructure.persistence.models import WebhookEndpointModel

from .uow import UnitOfWork, UnitOfWorkFactory


logger = logging.getLogger(__name__)

_SECRET_ALPHABET = string.ascii_letters + string.digits
SECRET_LENGTH = 32


def generate_secret(length: int = SECRET_LENGTH) -> str:
    return "".join(secrets.choice(_SECRET_ALPHABET) for _ in range(length))


@dataclass(slots=True, frozen=True)
class WebhookEndpoint:
    id: str
    url: str
    secret: str
    is_enabled: bool
    created_at: datetime

    @classmethod
    def from_model(cls, model: WebhookEndpointModel) -> WebhookEndpoint:
        return cls(
            id=model.id,
            url=model.url,
            secret=model.secret,
            is_enabled=bool(model.is_enabled),
            created_at=model.created_at,
        )

    def public_view(self) -> dict[str, object]:
        """Listing representation; the secret is only ever shown on creation."""

        return {
            "id": self.id,
            "url": self.url,
            "is_enabled": self.is_enabled,
            "created_at": self.created_at.isoformat(),
        }


class WebhookEndpointNotFound(LookupError):
    code = "WEBHOOK_ENDPOINT_NOT_FOUND"


class WebhookValidationError(ValueError):
    code = "WEBHOOK_URL_REQUIRED"


class WebhookEndpointRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, endpoint: WebhookEndpoint) -> None:
        self._session.add(
            WebhookEndpointModel(
                id=endpoint.id,
                url=endpoint.url,
                secret=endpoint.secret,
                is_enabled=endpoint.is_enabled,
                created_at=endpoint.created_at,
            )
        )
        self._session.flush()

    def list_all(self) -> list[WebhookEndpoint]:
        stmt = select(WebhookEndpointModel).order_by(
            WebhookEndpointModel.created_at.desc(), WebhookEndpointModel.id
        )
        return [WebhookEndpoint.from_model(row) for row in self._session.execute(stmt).scalars()]

    def list_enabled(self) -> list[WebhookEndpoint]:
        stmt = (
            select(WebhookEndpointModel)
            .where(WebhookEndpointModel.is_enabled.is_(True))
            .order_by(WebhookEndpointModel.created_at, WebhookEndpointModel.id)
        )
        return [WebhookEndpoint.from_model(row) for row in self._session.execute(stmt).scalars()]

    def set_enabled(self, endpoint_id: str, enabled: bool) -> bool:
        stmt = (
            update(WebhookEndpointModel)
            .where(WebhookEndpointModel.id == endpoint_id)
            .values(is_enabled=enabled)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def get(self, endpoint_id: str) -> WebhookEndpoint | None:
        model = self._session.get(WebhookEndpointModel, endpoint_id)
        return WebhookEndpoint.from_model(model) if model is not None else None


class WebhookEndpointService:
    """Administrative operations over webhook endpoints."""

    def __init__(self, *, uow_factory: UnitOfWorkFactory, clock: Clock) -> None:
        self._uow_factory = uow_factory
        self._clock = clock

    def create_endpoint(self, url: str) -> WebhookEndpoint:
        if url is None or not url.strip():
            raise WebhookValidationError("url is required")
        endpoint = WebhookEndpoint(
            id=str(uuid4()),
            url=url.strip(),
            secret=generate_secret(),
            is_enabled=True,
            created_at=self._clock.now(),
        )
        with self._uow_factory() as uow:
            WebhookEndpointRepository(uow.session).add(endpoint)
        logger.info(
            "webhook endpoint registered",
            extra={"code": "WEBHOOK_ENDPOINT_CREATED", "endpoint_id": endpoint.id},
        )
        return endpoint

    def list_endpoints(self) -> list[WebhookEndpoint]:
        with self._uow_factory() as uow:
            return WebhookEndpointRepository(uow.session).list_all()

    def list_enabled(self) -> list[WebhookEndpoint]:
        with self._uow_factory() as uow:
            return WebhookEndpointRepository(uow.session).list_enabled()

    def set_enabled(self, endpoint_id: str, enabled: bool) -> WebhookEndpoint:
        with self._uow_factory() as uow:
            repo = WebhookEndpointRepository(uow.session)
            if not repo.set_enabled(endpoint_id, enabled):
                raise WebhookEndpointNotFound(f"webhook endpoint {endpoint_id} not found")
            endpoint = repo.get(endpoint_id)
        logger.info(
            "webhook endpoint toggled",
            extra={"code": "WEBHOOK_ENDPOINT_TOGGLED", "endpoint_id": endpoint_id, "enabled": enabled},
        )
        return endpoint  # type: ignore[return-value]


def enabled_snapshot(uow: UnitOfWork) -> list[WebhookEndpoint]:
    return WebhookEndpointRepository(uow.session).list_enabled()


__all__ = [
    "SECRET_LENGTH",
    "WebhookEndpoint",
    "WebhookEndpointNotFound",
    "WebhookEndpointRepository",
    "WebhookEndpointService",
    "WebhookValidationError",
    "enabled_snapshot",
    "generate_secret",
]
