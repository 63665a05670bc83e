"""Job lifecycle API routes.

All mutating endpoints require the caller's identity in the
``X-Operator-Address`` header.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from dust_consolidator.api.dependencies import get_caller, get_orchestrator
from dust_consolidator.api.schemas import (
    BestRouteSwapRequest,
    CreateJobRequest,
    CreateJobResponse,
    FailRequest,
    JobListResponse,
    JobResponse,
    ReceiptRequest,
    SettleRequest,
    SwapRequest,
    SwapResponse,
)
from dust_consolidator.models.quote import ExecutionPayload
from dust_consolidator.orchestration.orchestrator import JobOrchestrator


router = APIRouter(prefix="/v1/jobs", tags=["jobs"])


@router.post("", response_model=CreateJobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    body: CreateJobRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    caller: str | None = Depends(get_caller),
) -> CreateJobResponse:
    job_id = await orchestrator.create_job(
        user=body.user,
        target_asset=body.target_asset,
        expected_amount=body.expected_amount,
        source_chains=body.source_chains,
        caller=caller,
    )
    return CreateJobResponse(job_id=job_id)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    user: str | None = None,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobListResponse:
    return JobListResponse(data=[JobResponse.from_job(j) for j in orchestrator.list_jobs(user)])


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    return JobResponse.from_job(orchestrator.get_job(job_id))


@router.post("/{job_id}/receipts", response_model=JobResponse)
async def record_receipt(
    job_id: str,
    body: ReceiptRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    caller: str | None = Depends(get_caller),
) -> JobResponse:
    job = await orchestrator.record_receipt(
        job_id, body.source_chain, body.asset, body.amount, caller=caller
    )
    return JobResponse.from_job(job)


@router.post("/{job_id}/swap", response_model=SwapResponse)
async def execute_swap(
    job_id: str,
    body: SwapRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    caller: str | None = Depends(get_caller),
) -> SwapResponse:
    job = orchestrator.get_job(job_id)
    payload = ExecutionPayload(
        source=body.source,
        to=body.to,
        data=body.data,
        value=body.value,
        sell_asset=body.from_asset,
        buy_asset=orchestrator.target_token(job),
        sell_amount=body.amount,
        expected_output=body.expected_output,
    )
    amount_out = await orchestrator.execute_swap(
        job_id, body.from_asset, body.amount, body.min_output_amount, payload, caller=caller
    )
    return SwapResponse(job_id=job_id, amount_out=str(amount_out))


@router.post("/{job_id}/swap/best", response_model=SwapResponse)
async def swap_with_best_route(
    job_id: str,
    body: BestRouteSwapRequest,
    request: Request,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    caller: str | None = Depends(get_caller),
) -> SwapResponse:
    slippage_bps = body.slippage_bps
    if slippage_bps is None:
        slippage_bps = request.app.state.settings.default_slippage_bps
    amount_out = await orchestrator.swap_with_best_route(
        job_id,
        body.from_asset,
        body.amount,
        slippage_bps,
        caller=caller,
        chain_id=body.chain_id,
    )
    return SwapResponse(job_id=job_id, amount_out=str(amount_out))


@router.post("/{job_id}/settle", response_model=JobResponse)
async def settle(
    job_id: str,
    body: SettleRequest | None = None,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    caller: str | None = Depends(get_caller),
) -> JobResponse:
    gas = body.gas_cost_estimate if body is not None else None
    job = await orchestrator.settle(job_id, caller=caller, gas_cost_estimate=gas)
    return JobResponse.from_job(job)


@router.post("/{job_id}/refund", response_model=JobResponse)
async def refund(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    caller: str | None = Depends(get_caller),
) -> JobResponse:
    return JobResponse.from_job(await orchestrator.refund(job_id, caller=caller))


@router.post("/{job_id}/fail", response_model=JobResponse)
async def mark_failed(
    job_id: str,
    body: FailRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    caller: str | None = Depends(get_caller),
) -> JobResponse:
    return JobResponse.from_job(await orchestrator.mark_failed(job_id, body.reason, caller=caller))
