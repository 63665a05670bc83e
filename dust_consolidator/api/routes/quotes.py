"""Quote and fee-estimate API routes (read-only, no caller identity)."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends

from dust_consolidator.api.dependencies import get_aggregator
from dust_consolidator.api.schemas import BestQuoteRequest, BestQuoteResponse, EstimateRequest
from dust_consolidator.quotes.aggregator import QuoteAggregator
from dust_consolidator.services.fee_estimator import ScanSummary, estimate_fees


router = APIRouter(prefix="/v1", tags=["quotes"])


@router.post("/quotes/best", response_model=BestQuoteResponse)
async def best_quote(
    body: BestQuoteRequest,
    aggregator: QuoteAggregator = Depends(get_aggregator),
) -> BestQuoteResponse:
    """Best route across every source; ``found`` is false when none quotes."""
    result = await aggregator.best_quote(
        body.chain_id, body.sell_asset, body.buy_asset, body.sell_amount, taker=body.taker
    )
    return BestQuoteResponse.from_result(result)


@router.post("/estimate")
async def estimate(body: EstimateRequest) -> dict[str, Any]:
    scan = ScanSummary(
        total_recoverable=Decimal(str(body.total_recoverable)),
        total_gas_estimate=Decimal(str(body.total_gas_estimate)),
        chain_count=body.chain_count,
    )
    return estimate_fees(scan, body.target_asset).to_dict()
