"""
Request Logging Middleware

Tags each API call with a request id (the caller's X-Request-ID or a fresh
one) and a correlation id, writes one access-log line when the response is
ready, and echoes both ids plus X-Process-Time back to the client.
"""

import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from ..config import DEBUG
from ..structured_logging import LogContext, generate_request_id, get_logger, log_request

logger = get_logger("api.middleware")

HIDDEN_HEADERS = frozenset({"authorization", "cookie", "x-api-key"})


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.headers.get("x-real-ip"):
        return request.headers["x-real-ip"]
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    # Health probes and API docs are served without an access-log line
    QUIET_PATHS = frozenset({"/health", "/favicon.ico", "/docs", "/redoc", "/openapi.json"})

    def __init__(self, app: ASGIApp, log_headers: bool = False):
        super().__init__(app)
        self.log_headers = log_headers

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        correlation_id = request.headers.get("X-Correlation-ID") or request_id

        if request.url.path in self.QUIET_PATHS:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        with LogContext(request_id=request_id, correlation_id=correlation_id):
            started = time.perf_counter()
            if self.log_headers and DEBUG:
                headers = {k: v for k, v in request.headers.items() if k.lower() not in HIDDEN_HEADERS}
                logger.debug("Incoming request", extra={"headers": headers})

            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    "Request raised",
                    extra={"error_type": type(e).__name__, "http_path": request.url.path},
                    exc_info=True,
                )
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            log_request(
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
                client_ip=client_ip(request),
                query=str(request.query_params) or None,
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}ms"
        return response
