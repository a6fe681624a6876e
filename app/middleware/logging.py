"""Logging middleware and configuration."""

import logging
import sys
import time
import uuid
from collections.abc import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings

logger = structlog.get_logger()


def configure_logging() -> None:
    """Configure structured logging."""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        processors = shared_processors + [
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure standard logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with a request id bound into the structlog context."""

    # Probes and scrapes would drown the booking traffic
    QUIET_PATHS = frozenset({"/metrics", "/api/v1/health", "/api/v1/ping"})

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        """
        Log request and response details.

        Binds a request id into the structlog context so that every log line
        emitted while handling the request (enrichment steps included) carries it.

        Args:
            request: Request object
            call_next: Next middleware in chain

        Returns:
            Response object
        """
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        quiet = request.url.path in self.QUIET_PATHS
        start_time = time.perf_counter()

        if not quiet:
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client=request.client.host if request.client else None,
            )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        if not quiet:
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        response.headers["X-Process-Time"] = f"{duration_ms}ms"
        response.headers["X-Request-ID"] = request_id
        return response
