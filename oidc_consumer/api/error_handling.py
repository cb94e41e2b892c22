from __future__ import annotations

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from oidc_consumer.api.schemas import Envelope, ErrorBody
from oidc_consumer.logging import get_logger
from oidc_consumer.service.errors import FlowError, ServiceError
from oidc_consumer.storage.errors import SessionStoreError

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    500: "server_error",
    502: "upstream_error",
}


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "server_error")


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    """Render the stable error envelope."""
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details)
    envelope = Envelope(status="error", error=error_body)
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Install consistent exception handlers for flow, provider and store errors."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "flow_error" if isinstance(exc, FlowError) else "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _error_response(exc.status_code, exc.message, exc.detail or None, code=exc.error_code)

    @app.exception_handler(SessionStoreError)
    async def handle_store_error(request: Request, exc: SessionStoreError):
        logger.error(
            "session_store_error",
            path=request.url.path,
            method=request.method,
            message=exc.message,
        )
        return _error_response(500, "session store unavailable", code="server_error")

    @app.exception_handler(httpx.HTTPStatusError)
    async def handle_provider_status(request: Request, exc: httpx.HTTPStatusError):
        logger.warning(
            "provider_http_error",
            path=request.url.path,
            method=request.method,
            upstream_status=exc.response.status_code,
            upstream_url=str(exc.request.url),
        )
        details = {"upstream_status": exc.response.status_code}
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            details.update({k: body[k] for k in ("error", "error_description") if k in body})
        return _error_response(502, "identity provider request failed", details, code="upstream_error")

    @app.exception_handler(httpx.HTTPError)
    async def handle_provider_transport(request: Request, exc: httpx.HTTPError):
        logger.warning(
            "provider_transport_error",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(502, "identity provider unreachable", code="upstream_error")

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
        message = detail.get("detail", "http error") if isinstance(detail, dict) else str(exc.detail)
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, str(message), detail)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, "internal server error", code="server_error")
