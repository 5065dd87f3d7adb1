from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from payflow.config import AppConfig, get_config
from payflow.core.clock import Clock, SystemClock
from payflow.core.logging_config import setup_logging
from payflow.infrastructure.monitoring.metrics import MessagingMetrics
from payflow.infrastructure.persistence.session import create_schema, make_engine, make_session_factory
from payflow.messaging.idempotency import IdempotencyGuard
from payflow.messaging.uow import sqlalchemy_uow_factory
from payflow.messaging.webhooks import WebhookEndpointService
from payflow.payments.service import PaymentIntentService

from .errors import install_error_handlers


logger = logging.getLogger(__name__)

REPLAY_HEADER = "Idempotent-Replayed"


class CreatePaymentIntentRequest(BaseModel):
    amount: int
    currency: str


class CreateWebhookEndpointRequest(BaseModel):
    url: str


@dataclass(slots=True)
class ApplicationContainer:
    config: AppConfig
    clock: Clock
    metrics: MessagingMetrics
    payments: PaymentIntentService
    webhooks: WebhookEndpointService


def build_container(
    config: AppConfig,
    *,
    session_factory: sessionmaker | None = None,
    clock: Clock | None = None,
    metrics: MessagingMetrics | None = None,
) -> ApplicationContainer:
    if session_factory is None:
        engine = make_engine(config.database.dsn, echo=config.database.echo)
        if engine.dialect.name == "sqlite":
            create_schema(engine)
        session_factory = make_session_factory(engine)
    clock = clock or SystemClock()
    metrics = metrics or MessagingMetrics()
    uow_factory = sqlalchemy_uow_factory(session_factory)
    guard = IdempotencyGuard(
        uow_factory=uow_factory,
        clock=clock,
        metrics=metrics,
        max_retries=config.idempotency.max_retries,
        retry_base_seconds=config.idempotency.retry_base_seconds,
    )
    return ApplicationContainer(
        config=config,
        clock=clock,
        metrics=metrics,
        payments=PaymentIntentService(
            uow_factory=uow_factory,
            guard=guard,
            clock=clock,
            max_retries=config.idempotency.max_retries,
        ),
        webhooks=WebhookEndpointService(uow_factory=uow_factory, clock=clock),
    )


def _container(request: Request) -> ApplicationContainer:
    return request.app.state.container


def create_app(
    config: AppConfig | None = None,
    *,
    session_factory: sessionmaker | None = None,
    clock: Clock | None = None,
    metrics: MessagingMetrics | None = None,
) -> FastAPI:
    config = config or get_config()
    container = build_container(config, session_factory=session_factory, clock=clock, metrics=metrics)

    app = FastAPI(title=config.observability.service_name)
    app.state.container = container
    install_error_handlers(app)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics_endpoint(request: Request) -> PlainTextResponse:
        registry = _container(request).metrics.registry
        return PlainTextResponse(generate_latest(registry).decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    @app.post("/v1/payment_intents", status_code=201)
    def create_payment_intent(
        body: CreatePaymentIntentRequest,
        request: Request,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    ) -> JSONResponse:
        result = _container(request).payments.create_payment_intent(
            body.amount,
            body.currency,
            idempotency_key=idempotency_key,
        )
        headers = {REPLAY_HEADER: "true"} if result.replayed else None
        return JSONResponse(status_code=result.status_code, content=result.intent, headers=headers)

    @app.get("/v1/payment_intents/{intent_id}")
    def get_payment_intent(intent_id: str, request: Request) -> dict[str, Any]:
        return _container(request).payments.get_payment_intent(intent_id).as_dict()

    @app.post("/v1/payment_intents/{intent_id}/confirm")
    def confirm_payment_intent(intent_id: str, request: Request) -> dict[str, Any]:
        return _container(request).payments.confirm_payment_intent(intent_id).as_dict()

    @app.post("/v1/webhook_endpoints", status_code=201)
    def create_webhook_endpoint(body: CreateWebhookEndpointRequest, request: Request) -> dict[str, Any]:
        endpoint = _container(request).webhooks.create_endpoint(body.url)
        return {**endpoint.public_view(), "secret": endpoint.secret}

    @app.get("/v1/webhook_endpoints")
    def list_webhook_endpoints(request: Request) -> list[dict[str, Any]]:
        return [endpoint.public_view() for endpoint in _container(request).webhooks.list_endpoints()]

    @app.post("/v1/webhook_endpoints/{endpoint_id}/enable")
    def enable_webhook_endpoint(endpoint_id: str, request: Request) -> dict[str, Any]:
        return _container(request).webhooks.set_enabled(endpoint_id, True).public_view()

    @app.post("/v1/webhook_endpoints/{endpoint_id}/disable")
    def disable_webhook_endpoint(endpoint_id: str, request: Request) -> dict[str, Any]:
        return _container(request).webhooks.set_enabled(endpoint_id, False).public_view()

    logger.debug("application ready", extra={"code": "APP_READY"})
    return app


def serve() -> None:
    """Entry point for ``payflow-api``."""

    import uvicorn

    config = get_config()
    setup_logging(config.observability.log_level, config.observability.log_file)
    uvicorn.run(create_app(config), host="0.0.0.0", port=8000, log_config=None)


__all__ = ["ApplicationContainer", "build_container", "create_app", "serve"]
