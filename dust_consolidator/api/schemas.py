"""Request and response bodies for the HTTP API.

Token amounts travel as decimal strings on the way out; uint256 values do not
fit a JSON number. Requests accept either strings or integers.
"""

from __future__ import annotations


from pydantic import BaseModel, Field

from dust_consolidator.models.gas import GasRecord, LedgerStats
from dust_consolidator.models.job import ConsolidationJob
from dust_consolidator.models.quote import AggregatorQuote, BestQuote


# =============================================================================
# Jobs
# =============================================================================


class CreateJobRequest(BaseModel):
    user: str
    target_asset: str = Field(default="USDC", examples=["USDC", "WETH"])
    expected_amount: int = Field(gt=0)
    source_chains: list[int] = Field(min_length=1)


class CreateJobResponse(BaseModel):
    job_id: str


class ReceiptRequest(BaseModel):
    source_chain: int
    asset: str
    amount: int = Field(gt=0)


class SwapRequest(BaseModel):
    """Swap with caller-supplied calldata."""

    from_asset: str
    amount: int = Field(gt=0)
    min_output_amount: int = Field(ge=0)
    source: str
    to: str
    data: str
    value: int = 0
    expected_output: int = Field(ge=0)


class BestRouteSwapRequest(BaseModel):
    from_asset: str
    amount: int = Field(gt=0)
    slippage_bps: int | None = Field(default=None, ge=0, le=10_000)
    chain_id: int | None = None


class SwapResponse(BaseModel):
    job_id: str
    amount_out: str


class SettleRequest(BaseModel):
    gas_cost_estimate: int | None = Field(default=None, ge=0)


class FailRequest(BaseModel):
    reason: str = Field(min_length=1)


class JobResponse(BaseModel):
    job_id: str
    user: str
    target_asset: str
    status: str
    expected_amount: str
    received_amount: str
    swapped_amount: str
    net_amount: str | None
    gas_cost: str
    service_fee: str
    refunded_amount: str
    holdings: dict[str, str]
    source_chains: list[int]
    failure_reason: str | None
    created_at: int
    completed_at: int | None

    @classmethod
    def from_job(cls, job: ConsolidationJob) -> JobResponse:
        return cls(
            job_id=job.job_id,
            user=job.user,
            target_asset=job.target_asset,
            status=job.status.value,
            expected_amount=str(job.expected_amount),
            received_amount=str(job.received_amount),
            swapped_amount=str(job.swapped_amount),
            net_amount=None if job.net_amount is None else str(job.net_amount),
            gas_cost=str(job.gas_cost),
            service_fee=str(job.service_fee),
            refunded_amount=str(job.refunded_amount),
            holdings={asset: str(amount) for asset, amount in job.holdings.items()},
            source_chains=job.source_chains,
            failure_reason=job.failure_reason,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )


class JobListResponse(BaseModel):
    data: list[JobResponse]


# =============================================================================
# Quotes
# =============================================================================


class BestQuoteRequest(BaseModel):
    chain_id: int
    sell_asset: str
    buy_asset: str
    sell_amount: int = Field(gt=0)
    taker: str | None = None


class QuoteInfo(BaseModel):
    source: str
    gross_output: str
    fee_bps: int
    net_output: str
    gas_estimate: str
    has_payload: bool

    @classmethod
    def from_quote(cls, quote: AggregatorQuote) -> QuoteInfo:
        return cls(
            source=quote.source,
            gross_output=str(quote.gross_output),
            fee_bps=quote.fee_bps,
            net_output=str(quote.net_output),
            gas_estimate=str(quote.gas_estimate),
            has_payload=quote.payload is not None,
        )


class BestQuoteResponse(BaseModel):
    found: bool
    best: QuoteInfo | None = None
    candidates: list[QuoteInfo] = Field(default_factory=list)
    operator_fee_bps: int | None = None

    @classmethod
    def from_result(cls, result: BestQuote | None) -> BestQuoteResponse:
        if result is None:
            return cls(found=False)
        return cls(
            found=True,
            best=QuoteInfo.from_quote(result.best),
            candidates=[QuoteInfo.from_quote(q) for q in result.candidates],
            operator_fee_bps=result.operator_fee_bps,
        )


# =============================================================================
# Fee Estimate
# =============================================================================


class EstimateRequest(BaseModel):
    total_recoverable: float = Field(ge=0)
    total_gas_estimate: float = Field(ge=0)
    chain_count: int = Field(ge=0)
    target_asset: str = "USDC"


# =============================================================================
# Sponsorship
# =============================================================================


class PriceBasisBody(BaseModel):
    gas_price_wei: int = Field(ge=0)
    native_price: int = Field(ge=0, description="Settlement units per whole native token")


class SponsorRequest(BaseModel):
    user: str
    job_id: str
    estimated_gas_units: int = Field(gt=0)
    price_basis: PriceBasisBody


class SponsorResponse(BaseModel):
    job_id: str
    cost: str


class UpdateCostRequest(BaseModel):
    actual_gas_units: int = Field(ge=0)
    price_basis: PriceBasisBody


class LimitsRequest(BaseModel):
    per_user_cap_wei: int = Field(ge=0)
    per_job_cap_wei: int = Field(ge=0)
    min_interval_s: int = Field(ge=0)


class PoolRequest(BaseModel):
    amount_wei: int = Field(gt=0)


class PoolResponse(BaseModel):
    pool_balance_wei: str


class GasRecordResponse(BaseModel):
    job_id: str
    user: str
    gas_units: str
    gas_value_wei: str
    cost: str
    recovered: bool
    timestamp: float

    @classmethod
    def from_record(cls, record: GasRecord) -> GasRecordResponse:
        return cls(
            job_id=record.job_id,
            user=record.user,
            gas_units=str(record.gas_units),
            gas_value_wei=str(record.gas_value_wei),
            cost=str(record.cost),
            recovered=record.recovered,
            timestamp=record.timestamp,
        )


class LedgerStatsResponse(BaseModel):
    pool_balance_wei: str
    total_sponsored_wei: str
    total_recovered: str
    outstanding_cost: str
    record_count: int

    @classmethod
    def from_stats(cls, stats: LedgerStats) -> LedgerStatsResponse:
        return cls(
            pool_balance_wei=str(stats.pool_balance_wei),
            total_sponsored_wei=str(stats.total_sponsored_wei),
            total_recovered=str(stats.total_recovered),
            outstanding_cost=str(stats.outstanding_cost),
            record_count=stats.record_count,
        )


# =============================================================================
# Gateway
# =============================================================================


class TokenAmountBody(BaseModel):
    token: str
    amount: int = Field(ge=0)


class InboundMessageRequest(BaseModel):
    message_id: str
    source_chain_selector: int
    sender: str
    data: str = Field(description="0x-prefixed ABI-encoded payload")
    token_amounts: list[TokenAmountBody] = Field(default_factory=list)


class TrustedSenderRequest(BaseModel):
    sender: str | None = None


class TrustedSendersResponse(BaseModel):
    trusted_senders: dict[str, str]
