from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from payflow.messaging.errors import InvalidIdempotencyKey, KeyConflict, TransientStoreError
from payflow.messaging.webhooks import WebhookEndpointNotFound, WebhookValidationError
from payflow.payments.service import (
    InvalidPaymentIntentState,
    PaymentIntentNotFound,
    PaymentValidationError,
)


logger = logging.getLogger(__name__)


def error_envelope(code: str, message: str) -> dict[str, dict[str, str]]:
    return {"error": {"code": code, "message": message}}


def _message(exc: Exception) -> str:
    text = getattr(exc, "message", None) or str(exc)
    # codes travel in front of messages as "CODE|message"
    return text.split("|", 1)[1] if "|" in text else text


def install_error_handlers(app: FastAPI) -> None:
    def _respond(status_code: int, code: str, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=error_envelope(code, _message(exc)))

    @app.exception_handler(PaymentValidationError)
    async def payment_validation_handler(request: Request, exc: PaymentValidationError):
        return _respond(400, exc.code, exc)

    @app.exception_handler(WebhookValidationError)
    async def webhook_validation_handler(request: Request, exc: WebhookValidationError):
        return _respond(400, exc.code, exc)

    @app.exception_handler(InvalidIdempotencyKey)
    async def invalid_key_handler(request: Request, exc: InvalidIdempotencyKey):
        return _respond(400, exc.code, exc)

    @app.exception_handler(KeyConflict)
    async def key_conflict_handler(request: Request, exc: KeyConflict):
        return _respond(409, exc.code, exc)

    @app.exception_handler(PaymentIntentNotFound)
    async def intent_not_found_handler(request: Request, exc: PaymentIntentNotFound):
        return _respond(404, exc.code, exc)

    @app.exception_handler(WebhookEndpointNotFound)
    async def endpoint_not_found_handler(request: Request, exc: WebhookEndpointNotFound):
        return _respond(404, exc.code, exc)

    @app.exception_handler(InvalidPaymentIntentState)
    async def invalid_state_handler(request: Request, exc: InvalidPaymentIntentState):
        return _respond(409, exc.code, exc)

    @app.exception_handler(TransientStoreError)
    async def transient_store_handler(request: Request, exc: TransientStoreError):
        return JSONResponse(
            status_code=503,
            content=error_envelope(exc.code, "store busy; retry with the same idempotency key"),
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid request')}" if location else "invalid request"
        return JSONResponse(status_code=400, content=error_envelope("REQUEST_INVALID", message))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) and exc.detail else "request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(getattr(exc, "code", "HTTP_ERROR"), message),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled error", extra={"code": "INTERNAL_SERVER_ERROR", "path": request.url.path})
        return JSONResponse(
            status_code=500,
            content=error_envelope("INTERNAL_SERVER_ERROR", "internal error"),
        )


__all__ = ["error_envelope", "install_error_handlers"]
