"""Gas sponsorship API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from dust_consolidator.api.dependencies import get_caller, get_ledger
from dust_consolidator.api.schemas import (
    GasRecordResponse,
    LedgerStatsResponse,
    LimitsRequest,
    PoolRequest,
    PoolResponse,
    PriceBasisBody,
    SponsorRequest,
    SponsorResponse,
    UpdateCostRequest,
)
from dust_consolidator.core.exceptions import GasRecordNotFoundError
from dust_consolidator.models.gas import PriceBasis, SponsorshipLimits
from dust_consolidator.services.ledger import GasSponsorshipLedger


router = APIRouter(prefix="/v1/sponsorship", tags=["sponsorship"])


def _basis(body: PriceBasisBody) -> PriceBasis:
    return PriceBasis(gas_price_wei=body.gas_price_wei, native_price=body.native_price)


@router.post("", response_model=SponsorResponse)
async def sponsor(
    body: SponsorRequest,
    ledger: GasSponsorshipLedger = Depends(get_ledger),
    caller: str | None = Depends(get_caller),
) -> SponsorResponse:
    cost = await ledger.sponsor(
        body.user, body.job_id, body.estimated_gas_units, _basis(body.price_basis), caller=caller
    )
    return SponsorResponse(job_id=body.job_id, cost=str(cost))


# Static paths are registered before /{job_id}
@router.get("/stats", response_model=LedgerStatsResponse)
async def stats(ledger: GasSponsorshipLedger = Depends(get_ledger)) -> LedgerStatsResponse:
    return LedgerStatsResponse.from_stats(ledger.stats())


@router.put("/limits", response_model=LimitsRequest)
async def set_limits(
    body: LimitsRequest,
    ledger: GasSponsorshipLedger = Depends(get_ledger),
    caller: str | None = Depends(get_caller),
) -> LimitsRequest:
    ledger.set_limits(SponsorshipLimits(**body.model_dump()), caller=caller)
    return body


@router.post("/pool/credit", response_model=PoolResponse)
async def credit_pool(
    body: PoolRequest,
    ledger: GasSponsorshipLedger = Depends(get_ledger),
    caller: str | None = Depends(get_caller),
) -> PoolResponse:
    balance = await ledger.credit_pool(body.amount_wei, caller=caller)
    return PoolResponse(pool_balance_wei=str(balance))


@router.post("/pool/debit", response_model=PoolResponse)
async def debit_pool(
    body: PoolRequest,
    ledger: GasSponsorshipLedger = Depends(get_ledger),
    caller: str | None = Depends(get_caller),
) -> PoolResponse:
    balance = await ledger.debit_pool(body.amount_wei, caller=caller)
    return PoolResponse(pool_balance_wei=str(balance))


@router.get("/{job_id}", response_model=GasRecordResponse)
async def get_record(
    job_id: str,
    ledger: GasSponsorshipLedger = Depends(get_ledger),
) -> GasRecordResponse:
    record = ledger.get_record(job_id)
    if record is None:
        raise GasRecordNotFoundError(job_id)
    return GasRecordResponse.from_record(record)


@router.put("/{job_id}/cost", response_model=SponsorResponse)
async def update_cost(
    job_id: str,
    body: UpdateCostRequest,
    ledger: GasSponsorshipLedger = Depends(get_ledger),
    caller: str | None = Depends(get_caller),
) -> SponsorResponse:
    cost = await ledger.update_cost(
        job_id, body.actual_gas_units, _basis(body.price_basis), caller=caller
    )
    return SponsorResponse(job_id=job_id, cost=str(cost))
