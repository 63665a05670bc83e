"""Health check API routes.

Liveness (/health) and readiness (/health/ready) endpoints for
orchestration health checks.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dust_consolidator import __version__


# =============================================================================
# Constants
# =============================================================================

STATUS_OK = "ok"
STATUS_READY = "ready"
STATUS_NOT_READY = "not_ready"
SERVICE_NAME = "dust-consolidator"
REASON_NOT_INITIALIZED = "Orchestrator not initialized"


# =============================================================================
# Response Models
# =============================================================================


class HealthResponse(BaseModel):
    status: str = Field(default=STATUS_OK, examples=["ok"])
    service: str = Field(default=SERVICE_NAME)
    version: str = Field(default=__version__)


class ReadinessResponse(BaseModel):
    status: str = Field(examples=["ready", "not_ready"])
    quote_sources: list[str] = Field(default_factory=list)
    events_connected: bool = False
    pool_balance_wei: str | None = None
    reason: str | None = None


router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
)
async def health_check() -> HealthResponse:
    """Liveness check: 200 whenever the process is serving."""
    return HealthResponse()


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Service is ready", "model": ReadinessResponse},
        503: {"description": "Service is not ready", "model": ReadinessResponse},
    },
    summary="Readiness check",
)
async def readiness_check(request: Request) -> JSONResponse:
    """Readiness check: 503 until the orchestrator is wired up."""
    state = request.app.state
    if getattr(state, "orchestrator", None) is None:
        response = ReadinessResponse(status=STATUS_NOT_READY, reason=REASON_NOT_INITIALIZED)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(exclude_none=True),
        )

    aggregator = getattr(state, "aggregator", None)
    ledger = getattr(state, "ledger", None)
    publisher = getattr(state, "publisher", None)
    response = ReadinessResponse(
        status=STATUS_READY,
        quote_sources=aggregator.source_names if aggregator is not None else [],
        events_connected=publisher is not None and publisher.is_connected,
        pool_balance_wei=str(ledger.pool_balance) if ledger is not None else None,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=response.model_dump(exclude_none=True),
    )
