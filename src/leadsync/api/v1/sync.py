"""Sync invocation endpoint.

POST /api/v1/sync/salesforce-leads runs one discover-and-sync cycle and returns a
JSON summary. It takes no body and is meant to be called by an external
scheduler. OPTIONS answers pre-flight with permissive CORS headers; every
other method gets a JSON 405.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


# ── Dependency Injection Helper ──────────────────────────────────────────────


def _get_sync_orchestrator(request: Request) -> Any:
    """Retrieve SyncOrchestrator from app.state, or None before startup wired it."""
    return getattr(request.app.state, "sync_orchestrator", None)


def _error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": error},
        headers={"Access-Control-Allow-Origin": "*"},
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/salesforce-leads")
async def sync_salesforce_leads(request: Request) -> JSONResponse:
    """Sync every active Salesforce integration, one at a time.

    Per-integration failures are reported inside results with status
    "failed"; only a failure outside any single integration (e.g. the
    discovery query) yields a 500.
    """
    orchestrator = _get_sync_orchestrator(request)
    if orchestrator is None:
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Lead sync not initialized")

    try:
        cycle = await orchestrator.run_sync_cycle()
    except Exception as exc:
        logger.error("sync.cycle_failed", error=str(exc), error_type=type(exc).__name__)
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or type(exc).__name__
        )

    return JSONResponse(
        content=cycle.model_dump(mode="json", exclude_none=True),
        headers={"Access-Control-Allow-Origin": "*"},
    )


@router.options("/salesforce-leads")
async def sync_salesforce_leads_preflight() -> Response:
    """CORS pre-flight."""
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.api_route("/salesforce-leads", methods=["GET", "PUT", "PATCH", "DELETE"])
async def sync_salesforce_leads_method_not_allowed() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        content={"ok": False, "error": "Method not allowed"},
        headers={"Allow": "POST, OPTIONS", "Access-Control-Allow-Origin": "*"},
    )
