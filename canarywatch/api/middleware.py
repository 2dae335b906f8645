"""FastAPI middleware: correlation IDs, request metrics and error mapping."""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from canarywatch.assignment import AssignmentError
from canarywatch.metrics import api_request_duration_seconds, api_requests_total

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Correlation-ID"


def _route_label(request: Request) -> str:
    # Route templates keep client ids out of metric labels
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id to the structlog context and records request metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex[:12]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
        )

        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start

        route = _route_label(request)
        api_requests_total.labels(route=route, status=f"{response.status_code // 100}xx").inc()
        api_request_duration_seconds.labels(route=route).observe(elapsed)
        logger.info(
            "Request completed",
            status=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
        )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


def add_exception_handlers(app: FastAPI) -> None:
    """Map domain errors to structured JSON responses.

    ValueError (including pydantic validation of overrides) -> 400,
    AssignmentError (assignment storage down) -> 503, anything else -> 500.
    """

    @app.exception_handler(ValueError)
    async def value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
        return _error(400, "bad_request", str(exc))

    @app.exception_handler(AssignmentError)
    async def assignment_error_handler(_request: Request, exc: AssignmentError) -> JSONResponse:
        logger.error("Assignment storage unavailable", error=str(exc))
        return _error(503, "assignment_unavailable", str(exc))

    @app.exception_handler(Exception)
    async def generic_error_handler(_request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", error=str(exc), exc_info=exc)
        return _error(500, "internal_server_error", "An unexpected error occurred")
