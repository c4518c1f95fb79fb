import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from bikawo.infra.logging import clear_log_context, update_log_context

access_logger = logging.getLogger("bikawo.request")

REQUEST_ID_HEADER = "X-Request-ID"


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns the request id, binds it to the log context and writes the access log line."""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            latency_ms = int((time.perf_counter() - started) * 1000)
            access_logger.info(
                "request",
                extra={"extra": {"status_code": status_code, "latency_ms": latency_ms}},
            )
            clear_log_context()


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, metrics_client) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            label = _route_label(request)
            self.metrics.record_http_latency(request.method, label, status_code, time.perf_counter() - started)
            if status_code >= 500:
                self.metrics.record_http_5xx(request.method, label)
