"""Accessors for components stored on ``app.state`` during lifespan."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from dust_consolidator.core.constants import OPERATOR_HEADER
from dust_consolidator.orchestration.orchestrator import JobOrchestrator
from dust_consolidator.quotes.aggregator import QuoteAggregator
from dust_consolidator.services.gateway import CrossChainGateway
from dust_consolidator.services.ledger import GasSponsorshipLedger


def _component(request: Request, name: str) -> Any:
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return component


def get_orchestrator(request: Request) -> JobOrchestrator:
    return _component(request, "orchestrator")


def get_ledger(request: Request) -> GasSponsorshipLedger:
    return _component(request, "ledger")


def get_aggregator(request: Request) -> QuoteAggregator:
    return _component(request, "aggregator")


def get_gateway(request: Request) -> CrossChainGateway:
    return _component(request, "gateway")


def get_caller(request: Request) -> str | None:
    """Caller identity from the operator header (None when absent)."""
    return request.headers.get(OPERATOR_HEADER)
