"""FastAPI middleware binding correlation ids and recording request metrics."""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .logging import get_logger

REQUEST_LATENCY = Histogram(
    "knowledge_http_request_latency_seconds",
    "Latency of HTTP requests.",
    ["method", "route", "status_code"],
)

REQUEST_COUNTER = Counter(
    "knowledge_http_requests_total",
    "Total number of processed HTTP requests.",
    ["method", "route", "status_code"],
)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind ``correlation_id`` to the log context for the lifetime of a request."""

    def __init__(self, app: ASGIApp, *, service_name: str) -> None:
        super().__init__(app)
        self._logger = get_logger(service_name)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = correlation_id
            return response
        finally:
            duration = time.perf_counter() - start
            route = _route_from_scope(request)
            REQUEST_COUNTER.labels(request.method, route, str(status_code)).inc()
            REQUEST_LATENCY.labels(request.method, route, str(status_code)).observe(duration)
            self._logger.info(
                "http.request.completed",
                method=request.method,
                route=route,
                status_code=status_code,
                duration_ms=round(duration * 1000, 2),
            )
            structlog.contextvars.unbind_contextvars("correlation_id")


def metrics_response() -> Response:
    """Generate a Prometheus metrics response."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def _route_from_scope(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path
