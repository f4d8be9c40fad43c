"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database initialization and the shared HTTP client,
and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.leadsync.config import get_settings
from src.leadsync.core.database import close_db, get_session, init_db
from src.leadsync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.leadsync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.leadsync.api.v1.router import router as v1_router
from src.leadsync.integrations.repository import SyncRepository
from src.leadsync.integrations.sync import SyncOrchestrator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and the sync orchestrator; close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    http_client = httpx.AsyncClient(timeout=settings.SALESFORCE_REQUEST_TIMEOUT)
    app.state.http_client = http_client
    app.state.sync_orchestrator = SyncOrchestrator(
        repository=SyncRepository(session_factory=get_session),
        http_client=http_client,
        settings=settings,
    )
    log.info("leadsync.started", environment=settings.ENVIRONMENT.value)

    yield

    app.state.sync_orchestrator = None
    await http_client.aclose()
    await close_db()
    log.info("leadsync.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Lead Sync API",
        version="0.1.0",
        description="Incremental Salesforce to lead store synchronization",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
