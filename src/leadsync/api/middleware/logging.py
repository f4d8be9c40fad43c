"""Structured logging setup and request logging middleware.

Every request gets a request_id (taken from X-Request-ID or generated) that
is bound into structlog's context, so the sync.* and salesforce.* events a
cycle emits carry the id of the POST that triggered it. The id is echoed
back in the X-Request-ID response header.

Liveness and scrape traffic (/health*, /metrics) is logged at debug so the
scheduler's sync invocations stay visible in the request log.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.leadsync.config import Environment, get_settings

logger = structlog.get_logger(__name__)

QUIET_PATH_PREFIXES = ("/health", "/metrics")


def configure_structlog() -> None:
    """JSON lines in production, console output elsewhere."""
    settings = get_settings()
    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _route_name(request: Request) -> str | None:
    route = request.scope.get("route")
    return getattr(route, "name", None)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request_id for downstream logs and log each request's outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        path = request.url.path
        start = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "http.request_error",
                    method=request.method,
                    path=path,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                raise

            response.headers["X-Request-ID"] = request_id
            fields = {
                "method": request.method,
                "path": path,
                "route": _route_name(request),
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            }
            if response.status_code >= 500:
                logger.error("http.request_completed", **fields)
            elif response.status_code >= 400:
                logger.warning("http.request_completed", **fields)
            elif path.startswith(QUIET_PATH_PREFIXES):
                logger.debug("http.request_completed", **fields)
            else:
                logger.info("http.request_completed", **fields)
            return response
        finally:
            structlog.contextvars.clear_contextvars()
