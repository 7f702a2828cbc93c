"""Middleware for observability: request/response logging."""

import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from sonicvault.infrastructure.observability.logging import (
    get_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger(__name__)


# Hey future me - one completion line per request, never a "started" line, and nothing for
# the media mount (audio range requests would flood the log). The correlation ID is taken
# from X-Correlation-ID when the client sends one and echoed back on the response.
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests and responses."""

    def __init__(
        self,
        app: ASGIApp,
        log_request_body: bool = False,
        skip_prefixes: tuple[str, ...] = ("/media/",),
    ) -> None:
        """Initialize middleware.

        Args:
            app: ASGI application
            log_request_body: Whether to log request bodies at DEBUG (never in production)
            skip_prefixes: Path prefixes that are not logged
        """
        super().__init__(app)
        self.log_request_body = log_request_body
        self.skip_prefixes = skip_prefixes

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        set_correlation_id(request.headers.get("X-Correlation-ID"))

        method = request.method
        path = request.url.path
        skip = path.startswith(self.skip_prefixes)

        if self.log_request_body and not skip and method in ("POST", "PUT", "PATCH"):
            body = await request.body()
            logger.debug(
                "Request body for %s %s: %s",
                method,
                path,
                body[:1024].decode("utf-8", errors="replace"),
            )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            logger.exception(
                "Request failed: %s %s",
                method,
                path,
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": duration_ms,
                    "error_type": type(e).__name__,
                },
            )
            raise

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        if not skip:
            marker = "✓" if response.status_code < 400 else "✗"
            logger.info(
                f"{marker} {method} {path} → {response.status_code} ({duration_ms}ms)",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                    "client_ip": request.client.host if request.client else "unknown",
                },
            )

        response.headers["X-Correlation-ID"] = get_correlation_id()
        return response
