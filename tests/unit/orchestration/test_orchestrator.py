"""Unit tests for JobOrchestrator.

Tests for:
- Job creation, validation and authorization
- Receipts accumulating into custody
- Swaps with a minimum-output floor and full rollback
- Settlement arithmetic, gas recovery and fee payout
- Failure, refund and idempotency of terminal operations
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_utils import to_checksum_address

from dust_consolidator.core.exceptions import (
    AlreadyRecoveredError,
    InvalidJobStateError,
    JobNotFoundError,
    NoRouteAvailableError,
    PayoutFailedError,
    SlippageExceededError,
    SwapExecutionError,
    UnauthorizedError,
    UnsupportedChainError,
    ValidationError,
)
from dust_consolidator.models.gas import PriceBasis
from dust_consolidator.models.job import JobStatus
from dust_consolidator.models.quote import BestQuote, ExecutionPayload
from dust_consolidator.orchestration.orchestrator import JobOrchestrator
from dust_consolidator.quotes.aggregator import QuoteAggregator
from dust_consolidator.services.executor import ExecutorError, InMemoryExecutor, Transfer
from dust_consolidator.services.ledger import GasSponsorshipLedger
from tests.conftest import FakeClock
from tests.support import (
    ADMIN,
    ARBITRUM_CHAIN_ID,
    BASE_CHAIN_ID,
    CONSOLIDATOR,
    DUST_TOKEN,
    FEE_RECIPIENT,
    OPERATOR,
    OTHER_USER,
    STRANGER,
    USDC_BASE,
    USER,
    make_quote,
    swap_payload,
)


# =============================================================================
# Constants
# =============================================================================

OPTIMISM_CHAIN_ID = 10
# 100k gas at 1 gwei, native priced at 20 USDC base units per whole token -> cost 2
GAS_UNITS = 100_000
GAS_BASIS = PriceBasis(gas_price_wei=10**9, native_price=20 * 10**6)


# =============================================================================
# Helpers
# =============================================================================


async def _create(orchestrator: JobOrchestrator, user: str = USER) -> str:
    return await orchestrator.create_job(
        user, "USDC", 105, [ARBITRUM_CHAIN_ID, OPTIMISM_CHAIN_ID], caller=OPERATOR
    )


async def _receive(
    orchestrator: JobOrchestrator,
    job_id: str,
    amount: int,
    asset: str = USDC_BASE,
    chain_id: int = ARBITRUM_CHAIN_ID,
):
    return await orchestrator.record_receipt(job_id, chain_id, asset, amount, caller=OPERATOR)


async def _received_job(orchestrator: JobOrchestrator, *amounts: int, asset: str = USDC_BASE) -> str:
    job_id = await _create(orchestrator)
    for amount in amounts:
        await _receive(orchestrator, job_id, amount, asset=asset)
    return job_id


class PausingExecutor(InMemoryExecutor):
    """Suspends each swap after it fills until ``resume`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.swapped = asyncio.Event()
        self.resume = asyncio.Event()

    async def execute(self, payload: ExecutionPayload, snapshot_id: int | None = None) -> int:
        fill = await super().execute(payload, snapshot_id=snapshot_id)
        self.swapped.set()
        await self.resume.wait()
        return fill


# =============================================================================
# Creation
# =============================================================================


class TestCreateJob:
    @pytest.mark.asyncio
    async def test_job_starts_created(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _create(orchestrator)

        job = orchestrator.get_job(job_id)
        assert job.status == JobStatus.CREATED
        assert job.user.lower() == USER
        assert job.source_chains == [ARBITRUM_CHAIN_ID, OPTIMISM_CHAIN_ID]
        assert job.received_amount == 0

    @pytest.mark.asyncio
    async def test_same_second_jobs_get_distinct_ids(self, orchestrator: JobOrchestrator) -> None:
        first = await _create(orchestrator)
        second = await _create(orchestrator)
        assert first != second

    @pytest.mark.asyncio
    async def test_unauthorized_caller_rejected(self, orchestrator: JobOrchestrator) -> None:
        with pytest.raises(UnauthorizedError):
            await orchestrator.create_job(USER, "USDC", 100, [1], caller=STRANGER)
        assert orchestrator.list_jobs() == []

    @pytest.mark.asyncio
    async def test_admin_may_act_as_operator(self, orchestrator: JobOrchestrator) -> None:
        job_id = await orchestrator.create_job(USER, "USDC", 100, [1], caller=ADMIN)
        assert orchestrator.get_job(job_id).status == JobStatus.CREATED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("target", "expected", "chains", "error"),
        [
            ("DAI", 100, [1], ValidationError),
            ("USDC", 0, [1], ValidationError),
            ("USDC", 100, [], ValidationError),
            ("USDC", 100, [999], UnsupportedChainError),
        ],
    )
    async def test_invalid_requests_rejected(
        self,
        orchestrator: JobOrchestrator,
        target: str,
        expected: int,
        chains: list[int],
        error: type[Exception],
    ) -> None:
        with pytest.raises(error):
            await orchestrator.create_job(USER, target, expected, chains, caller=OPERATOR)

    @pytest.mark.asyncio
    async def test_publishes_created_event(
        self, executor: InMemoryExecutor, ledger: GasSponsorshipLedger
    ) -> None:
        publisher = MagicMock()
        publisher.publish = AsyncMock(return_value=True)
        orchestrator = JobOrchestrator(
            executor=executor,
            ledger=ledger,
            admin=ADMIN,
            operators=[OPERATOR],
            fee_recipient=FEE_RECIPIENT,
            publisher=publisher,
        )

        job_id = await _create(orchestrator)

        event_type, payload = publisher.publish.call_args.args
        assert event_type == "job.created"
        assert payload["job_id"] == job_id
        assert payload["status"] == "created"


class TestReads:
    @pytest.mark.asyncio
    async def test_unknown_job(self, orchestrator: JobOrchestrator) -> None:
        with pytest.raises(JobNotFoundError):
            orchestrator.get_job("0x" + "00" * 32)

    @pytest.mark.asyncio
    async def test_snapshots_cannot_mutate_state(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 60)

        snapshot = orchestrator.get_job(job_id)
        snapshot.status = JobStatus.COMPLETE
        snapshot.holdings.clear()

        job = orchestrator.get_job(job_id)
        assert job.status == JobStatus.RECEIVING
        assert job.held(USDC_BASE) == 60

    @pytest.mark.asyncio
    async def test_list_jobs_filters_by_user(self, orchestrator: JobOrchestrator) -> None:
        mine = await _create(orchestrator, USER)
        await _create(orchestrator, OTHER_USER)

        assert [j.job_id for j in orchestrator.list_jobs(USER)] == [mine]
        assert len(orchestrator.list_jobs()) == 2


# =============================================================================
# Receipts
# =============================================================================


class TestRecordReceipt:
    @pytest.mark.asyncio
    async def test_first_receipt_moves_to_receiving(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _create(orchestrator)

        job = await _receive(orchestrator, job_id, 60)

        assert job.status == JobStatus.RECEIVING
        assert job.received_amount == 60
        assert job.held(USDC_BASE) == 60
        assert await executor.balance_of(USDC_BASE) == 60

    @pytest.mark.asyncio
    async def test_receipts_accumulate(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _create(orchestrator)
        await _receive(orchestrator, job_id, 60, chain_id=ARBITRUM_CHAIN_ID)
        job = await _receive(orchestrator, job_id, 45, chain_id=OPTIMISM_CHAIN_ID)

        assert job.received_amount == 105
        assert job.status == JobStatus.RECEIVING

    @pytest.mark.asyncio
    async def test_concurrent_receipts_are_all_counted(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _create(orchestrator)

        await asyncio.gather(*(_receive(orchestrator, job_id, 10) for _ in range(10)))

        assert orchestrator.get_job(job_id).received_amount == 100

    @pytest.mark.asyncio
    async def test_unauthorized_receipt_rejected(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _create(orchestrator)
        with pytest.raises(UnauthorizedError):
            await orchestrator.record_receipt(job_id, ARBITRUM_CHAIN_ID, USDC_BASE, 10, caller=None)
        assert orchestrator.get_job(job_id).status == JobStatus.CREATED

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _create(orchestrator)
        with pytest.raises(ValidationError):
            await _receive(orchestrator, job_id, 0)

    @pytest.mark.asyncio
    async def test_receipt_after_completion_rejected(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 105)
        await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=0)

        with pytest.raises(InvalidJobStateError):
            await _receive(orchestrator, job_id, 1)


# =============================================================================
# Swaps
# =============================================================================


class TestExecuteSwap:
    @pytest.mark.asyncio
    async def test_swap_credits_settlement_asset(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 1000, asset=DUST_TOKEN)

        amount_out = await orchestrator.execute_swap(
            job_id, DUST_TOKEN, 1000, 990, swap_payload(1000, 1000), caller=OPERATOR
        )

        job = orchestrator.get_job(job_id)
        assert amount_out == 1000
        assert job.status == JobStatus.SWAPPING
        assert job.swapped_amount == 1000
        assert job.held(DUST_TOKEN) == 0
        assert job.held(USDC_BASE) == 1000
        assert DUST_TOKEN not in job.holdings
        assert await executor.balance_of(USDC_BASE) == 1000

    @pytest.mark.asyncio
    async def test_output_below_floor_rolls_back(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 1000, asset=DUST_TOKEN)
        executor.slippage_bps = 600  # fill 940

        with pytest.raises(SlippageExceededError) as exc_info:
            await orchestrator.execute_swap(
                job_id, DUST_TOKEN, 1000, 950, swap_payload(1000, 1000), caller=OPERATOR
            )

        assert exc_info.value.amount_out == 940
        assert exc_info.value.min_output_amount == 950
        job = orchestrator.get_job(job_id)
        assert job.status == JobStatus.RECEIVING
        assert job.swapped_amount == 0
        assert job.held(DUST_TOKEN) == 1000
        assert await executor.balance_of(DUST_TOKEN) == 1000
        assert await executor.balance_of(USDC_BASE) == 0

    @pytest.mark.asyncio
    async def test_reverted_call_is_swap_failure(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 1000, asset=DUST_TOKEN)
        executor.fail_swaps = True

        with pytest.raises(SwapExecutionError) as exc_info:
            await orchestrator.execute_swap(
                job_id, DUST_TOKEN, 1000, 0, swap_payload(1000, 1000), caller=OPERATOR
            )

        assert not isinstance(exc_info.value, SlippageExceededError)
        assert orchestrator.get_job(job_id).held(DUST_TOKEN) == 1000
        assert await executor.balance_of(DUST_TOKEN) == 1000

    @pytest.mark.asyncio
    async def test_rollback_keeps_other_jobs_custody(
        self, ledger: GasSponsorshipLedger, clock: FakeClock
    ) -> None:
        executor = PausingExecutor()
        orchestrator = JobOrchestrator(
            executor=executor,
            ledger=ledger,
            admin=ADMIN,
            operators=[OPERATOR],
            fee_recipient=FEE_RECIPIENT,
            clock=clock,
        )
        swapping_job = await _received_job(orchestrator, 1000, asset=DUST_TOKEN)
        other_job = await _create(orchestrator, user=OTHER_USER)

        swap = asyncio.create_task(
            orchestrator.execute_swap(
                swapping_job, DUST_TOKEN, 1000, 1001, swap_payload(1000, 1000), caller=OPERATOR
            )
        )
        await executor.swapped.wait()
        await _receive(orchestrator, other_job, 300)
        executor.resume.set()

        with pytest.raises(SlippageExceededError):
            await swap

        assert orchestrator.get_job(other_job).held(USDC_BASE) == 300
        assert await executor.balance_of(USDC_BASE) == 300
        assert await executor.balance_of(DUST_TOKEN) == 1000
        assert orchestrator.get_job(swapping_job).held(DUST_TOKEN) == 1000

    @pytest.mark.asyncio
    async def test_partial_swap_keeps_remainder(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 1000, asset=DUST_TOKEN)

        await orchestrator.execute_swap(
            job_id, DUST_TOKEN, 400, 0, swap_payload(400, 390), caller=OPERATOR
        )

        job = orchestrator.get_job(job_id)
        assert job.held(DUST_TOKEN) == 600
        assert job.held(USDC_BASE) == 390

    @pytest.mark.asyncio
    async def test_cannot_swap_more_than_held(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 100, asset=DUST_TOKEN)
        with pytest.raises(ValidationError, match="holds"):
            await orchestrator.execute_swap(
                job_id, DUST_TOKEN, 101, 0, swap_payload(101, 100), caller=OPERATOR
            )

    @pytest.mark.asyncio
    async def test_cannot_swap_settlement_asset(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 100)
        with pytest.raises(ValidationError, match="itself"):
            await orchestrator.execute_swap(
                job_id, USDC_BASE, 100, 0, swap_payload(100, 100, sell_asset=USDC_BASE), caller=OPERATOR
            )

    @pytest.mark.asyncio
    async def test_mismatched_payload_rejected(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 1000, asset=DUST_TOKEN)
        with pytest.raises(ValidationError, match="payload"):
            await orchestrator.execute_swap(
                job_id, DUST_TOKEN, 1000, 0, swap_payload(500, 500), caller=OPERATOR
            )

    @pytest.mark.asyncio
    async def test_swap_before_receipt_rejected(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _create(orchestrator)
        with pytest.raises(InvalidJobStateError):
            await orchestrator.execute_swap(
                job_id, DUST_TOKEN, 1, 0, swap_payload(1, 1), caller=OPERATOR
            )


class TestSwapWithBestRoute:
    @pytest.fixture
    def aggregator(self) -> MagicMock:
        return MagicMock(spec=QuoteAggregator)

    @pytest.fixture
    def routed(
        self,
        executor: InMemoryExecutor,
        ledger: GasSponsorshipLedger,
        aggregator: MagicMock,
    ) -> JobOrchestrator:
        return JobOrchestrator(
            executor=executor,
            ledger=ledger,
            admin=ADMIN,
            operators=[OPERATOR],
            fee_recipient=FEE_RECIPIENT,
            aggregator=aggregator,
            minimum_consolidation_amount=50,
            custody_address=CONSOLIDATOR,
        )

    @pytest.mark.asyncio
    async def test_floor_derived_from_net_and_slippage(
        self, routed: JobOrchestrator, aggregator: MagicMock, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(routed, 1000, asset=DUST_TOKEN)
        payload = swap_payload(1000, 1000)
        quote = make_quote("0x", 1000, payload=payload)
        aggregator.best_quote = AsyncMock(return_value=BestQuote(quote, (quote,), 120))
        aggregator.resolve_execution = AsyncMock(return_value=(quote, payload))
        executor.slippage_bps = 50  # fill 995, floor 990

        amount_out = await routed.swap_with_best_route(
            job_id, DUST_TOKEN, 1000, slippage_bps=100, caller=OPERATOR
        )

        assert amount_out == 995
        assert routed.custody_address == to_checksum_address(CONSOLIDATOR)
        aggregator.best_quote.assert_awaited_once_with(
            BASE_CHAIN_ID, DUST_TOKEN, USDC_BASE, 1000, taker=routed.custody_address
        )

    @pytest.mark.asyncio
    async def test_fill_under_derived_floor_fails(
        self, routed: JobOrchestrator, aggregator: MagicMock, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(routed, 1000, asset=DUST_TOKEN)
        payload = swap_payload(1000, 1000)
        quote = make_quote("0x", 1000, payload=payload)
        aggregator.best_quote = AsyncMock(return_value=BestQuote(quote, (quote,), 120))
        aggregator.resolve_execution = AsyncMock(return_value=(quote, payload))
        executor.slippage_bps = 200  # fill 980, floor 990

        with pytest.raises(SlippageExceededError):
            await routed.swap_with_best_route(job_id, DUST_TOKEN, 1000, slippage_bps=100, caller=OPERATOR)

    @pytest.mark.asyncio
    async def test_no_quote_is_no_route(self, routed: JobOrchestrator, aggregator: MagicMock) -> None:
        job_id = await _received_job(routed, 1000, asset=DUST_TOKEN)
        aggregator.best_quote = AsyncMock(return_value=None)

        with pytest.raises(NoRouteAvailableError):
            await routed.swap_with_best_route(job_id, DUST_TOKEN, 1000, slippage_bps=100, caller=OPERATOR)

    @pytest.mark.asyncio
    async def test_no_calldata_is_no_route(self, routed: JobOrchestrator, aggregator: MagicMock) -> None:
        job_id = await _received_job(routed, 1000, asset=DUST_TOKEN)
        quote = make_quote("1inch", 1000)
        aggregator.best_quote = AsyncMock(return_value=BestQuote(quote, (quote,), 120))
        aggregator.resolve_execution = AsyncMock(return_value=None)

        with pytest.raises(NoRouteAvailableError):
            await routed.swap_with_best_route(job_id, DUST_TOKEN, 1000, slippage_bps=100, caller=OPERATOR)

    @pytest.mark.asyncio
    async def test_without_aggregator_is_no_route(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 1000, asset=DUST_TOKEN)
        with pytest.raises(NoRouteAvailableError):
            await orchestrator.swap_with_best_route(job_id, DUST_TOKEN, 1000, 100, caller=OPERATOR)


# =============================================================================
# Settlement
# =============================================================================


class TestSettle:
    @pytest.mark.asyncio
    async def test_settlement_arithmetic(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 60, 45)

        job = await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=2)

        assert job.status == JobStatus.COMPLETE
        assert job.gas_cost == 2
        assert job.service_fee == 1
        assert job.net_amount == 102
        assert job.completed_at is not None
        assert executor.paid_to(USER, USDC_BASE) == 102
        assert executor.paid_to(FEE_RECIPIENT, USDC_BASE) == 1
        # Gas portion stays in custody
        assert await executor.balance_of(USDC_BASE) == 2

    @pytest.mark.asyncio
    async def test_settles_on_swapped_amount(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 1000, asset=DUST_TOKEN)
        await orchestrator.execute_swap(
            job_id, DUST_TOKEN, 1000, 0, swap_payload(1000, 500), caller=OPERATOR
        )

        job = await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=0)

        assert job.status == JobStatus.COMPLETE
        assert job.service_fee == 6
        assert job.net_amount == 494
        assert executor.paid_to(USER, USDC_BASE) == 494

    @pytest.mark.asyncio
    async def test_below_minimum_fails_without_payout(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 40)

        job = await orchestrator.settle(job_id, caller=OPERATOR)

        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "below minimum"
        assert executor.paid_to(USER, USDC_BASE) == 0

    @pytest.mark.asyncio
    async def test_total_not_covering_fees_fails(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 60)

        job = await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=60)

        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "insufficient for fees"

    @pytest.mark.asyncio
    async def test_settle_is_not_repeatable(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 60, 45)
        await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=2)

        with pytest.raises(InvalidJobStateError):
            await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=2)

        assert executor.paid_to(USER, USDC_BASE) == 102
        assert orchestrator.get_job(job_id).net_amount == 102

    @pytest.mark.asyncio
    async def test_settle_from_created_rejected(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _create(orchestrator)
        with pytest.raises(InvalidJobStateError):
            await orchestrator.settle(job_id, caller=OPERATOR)

    @pytest.mark.asyncio
    async def test_unauthorized_settle_rejected(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 105)
        with pytest.raises(UnauthorizedError):
            await orchestrator.settle(job_id, caller=STRANGER)
        assert orchestrator.get_job(job_id).status == JobStatus.RECEIVING

    @pytest.mark.asyncio
    async def test_unswapped_holdings_block_settlement(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 1000, asset=DUST_TOKEN)
        with pytest.raises(InvalidJobStateError, match="swap remaining"):
            await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=0)
        assert orchestrator.get_job(job_id).status == JobStatus.RECEIVING

    @pytest.mark.asyncio
    async def test_payout_failure_fails_job(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        job_id = await _received_job(orchestrator, 105)
        monkeypatch.setattr(executor, "transfer_batch", AsyncMock(side_effect=ExecutorError("rpc down")))

        job = await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=0)

        assert job.status == JobStatus.FAILED
        assert job.failure_reason.startswith("payout failed")
        assert job.held(USDC_BASE) == 105


class TestSettleGasRecovery:
    @pytest.mark.asyncio
    async def test_recorded_gas_cost_is_recovered(
        self, orchestrator: JobOrchestrator, ledger: GasSponsorshipLedger
    ) -> None:
        job_id = await _received_job(orchestrator, 60, 45)
        cost = await ledger.sponsor(USER, job_id, GAS_UNITS, GAS_BASIS, caller=OPERATOR)
        assert cost == 2

        job = await orchestrator.settle(job_id, caller=OPERATOR)

        assert job.gas_cost == 2
        assert job.net_amount == 102
        assert ledger.get_record(job_id).recovered is True
        assert ledger.stats().total_recovered == 2

    @pytest.mark.asyncio
    async def test_already_recovered_gas_blocks_settlement(
        self, orchestrator: JobOrchestrator, ledger: GasSponsorshipLedger, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 105)
        await ledger.sponsor(USER, job_id, GAS_UNITS, GAS_BASIS, caller=OPERATOR)
        await ledger.mark_recovered(job_id, caller=OPERATOR)

        with pytest.raises(AlreadyRecoveredError):
            await orchestrator.settle(job_id, caller=OPERATOR)

        assert orchestrator.get_job(job_id).status == JobStatus.RECEIVING
        assert executor.paid_to(USER, USDC_BASE) == 0
        assert ledger.stats().total_recovered == 2

    @pytest.mark.asyncio
    async def test_explicit_estimate_overrides_record(
        self, orchestrator: JobOrchestrator, ledger: GasSponsorshipLedger
    ) -> None:
        job_id = await _received_job(orchestrator, 105)
        await ledger.sponsor(USER, job_id, GAS_UNITS, GAS_BASIS, caller=OPERATOR)

        job = await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=5)

        assert job.gas_cost == 5
        assert job.net_amount == 99
        assert ledger.get_record(job_id).recovered is True

    @pytest.mark.asyncio
    async def test_added_operator_recovers_gas(
        self, orchestrator: JobOrchestrator, ledger: GasSponsorshipLedger, executor: InMemoryExecutor
    ) -> None:
        orchestrator.set_operator(STRANGER, True, caller=ADMIN)
        job_id = await _received_job(orchestrator, 105)
        await ledger.sponsor(USER, job_id, GAS_UNITS, GAS_BASIS, caller=STRANGER)

        job = await orchestrator.settle(job_id, caller=STRANGER)

        assert job.status == JobStatus.COMPLETE
        assert ledger.get_record(job_id).recovered is True
        assert executor.paid_to(USER, USDC_BASE) == job.net_amount

    @pytest.mark.asyncio
    async def test_unrecoverable_gas_blocks_payout(
        self, orchestrator: JobOrchestrator, ledger: GasSponsorshipLedger, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 105)
        await ledger.sponsor(USER, job_id, GAS_UNITS, GAS_BASIS, caller=OPERATOR)
        ledger.authorize_sponsor(OPERATOR, False, caller=ADMIN)

        with pytest.raises(UnauthorizedError):
            await orchestrator.settle(job_id, caller=OPERATOR)

        job = orchestrator.get_job(job_id)
        assert job.status == JobStatus.RECEIVING
        assert job.held(USDC_BASE) == 105
        assert executor.paid_to(USER, USDC_BASE) == 0
        assert ledger.get_record(job_id).recovered is False


# =============================================================================
# Failure & Refund
# =============================================================================


class TestFailureAndRefund:
    @pytest.mark.asyncio
    async def test_refund_after_below_minimum(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 40)
        await orchestrator.settle(job_id, caller=OPERATOR)

        job = await orchestrator.refund(job_id, caller=OPERATOR)

        assert job.status == JobStatus.REFUNDED
        assert job.refunded_amount == 40
        assert job.holdings == {}
        assert executor.paid_to(USER, USDC_BASE) == 40

    @pytest.mark.asyncio
    async def test_refund_returns_every_asset(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 30)
        await _receive(orchestrator, job_id, 500, asset=DUST_TOKEN)
        await orchestrator.mark_failed(job_id, "bridge stalled", caller=OPERATOR)

        await orchestrator.refund(job_id, caller=OPERATOR)

        assert executor.paid_to(USER, USDC_BASE) == 30
        assert executor.paid_to(USER, DUST_TOKEN) == 500

    @pytest.mark.asyncio
    async def test_failed_refund_moves_nothing(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 30)
        await _receive(orchestrator, job_id, 500, asset=DUST_TOKEN)
        await orchestrator.mark_failed(job_id, "bridge stalled", caller=OPERATOR)
        # custody of the second asset no longer covers the job
        await executor.transfer_batch(DUST_TOKEN, [Transfer(STRANGER, 100)])

        with pytest.raises(PayoutFailedError) as exc_info:
            await orchestrator.refund(job_id, caller=OPERATOR)

        assert exc_info.value.job_id == job_id
        job = orchestrator.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.held(USDC_BASE) == 30
        assert job.held(DUST_TOKEN) == 500
        assert executor.paid_to(USER, USDC_BASE) == 0
        assert await executor.balance_of(USDC_BASE) == 30

    @pytest.mark.asyncio
    async def test_refund_is_not_repeatable(
        self, orchestrator: JobOrchestrator, executor: InMemoryExecutor
    ) -> None:
        job_id = await _received_job(orchestrator, 40)
        await orchestrator.mark_failed(job_id, "operator abort", caller=OPERATOR)
        await orchestrator.refund(job_id, caller=OPERATOR)

        with pytest.raises(InvalidJobStateError):
            await orchestrator.refund(job_id, caller=OPERATOR)
        assert executor.paid_to(USER, USDC_BASE) == 40

    @pytest.mark.asyncio
    async def test_refund_requires_failed(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 40)
        with pytest.raises(InvalidJobStateError):
            await orchestrator.refund(job_id, caller=OPERATOR)

    @pytest.mark.asyncio
    async def test_mark_failed_from_created(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _create(orchestrator)

        job = await orchestrator.mark_failed(job_id, "quote expired", caller=OPERATOR)

        assert job.status == JobStatus.FAILED
        assert job.failure_reason == "quote expired"
        refunded = await orchestrator.refund(job_id, caller=OPERATOR)
        assert refunded.refunded_amount == 0

    @pytest.mark.asyncio
    async def test_mark_failed_on_terminal_job_rejected(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _received_job(orchestrator, 105)
        await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=0)

        with pytest.raises(InvalidJobStateError):
            await orchestrator.mark_failed(job_id, "too late", caller=OPERATOR)
        assert orchestrator.get_job(job_id).status == JobStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_empty_reason_rejected(self, orchestrator: JobOrchestrator) -> None:
        job_id = await _create(orchestrator)
        with pytest.raises(ValidationError):
            await orchestrator.mark_failed(job_id, "", caller=OPERATOR)


# =============================================================================
# Administration
# =============================================================================


class TestAdministration:
    def test_service_fee_capped(self, orchestrator: JobOrchestrator) -> None:
        with pytest.raises(ValidationError):
            orchestrator.set_service_fee(501, caller=ADMIN)
        assert orchestrator.service_fee_bps == 120

    def test_service_fee_admin_only(self, orchestrator: JobOrchestrator) -> None:
        with pytest.raises(UnauthorizedError):
            orchestrator.set_service_fee(100, caller=OPERATOR)

    def test_service_fee_propagates_to_aggregator(
        self, executor: InMemoryExecutor, ledger: GasSponsorshipLedger
    ) -> None:
        aggregator = QuoteAggregator(sources=[], service_fee_bps=120)
        orchestrator = JobOrchestrator(
            executor=executor,
            ledger=ledger,
            admin=ADMIN,
            operators=[OPERATOR],
            fee_recipient=FEE_RECIPIENT,
            aggregator=aggregator,
        )

        orchestrator.set_service_fee(200, caller=ADMIN)

        assert orchestrator.service_fee_bps == 200
        assert aggregator.service_fee_bps == 200

    def test_construction_rejects_excessive_fee(
        self, executor: InMemoryExecutor, ledger: GasSponsorshipLedger
    ) -> None:
        with pytest.raises(ValidationError):
            JobOrchestrator(
                executor=executor,
                ledger=ledger,
                admin=ADMIN,
                operators=[OPERATOR],
                fee_recipient=FEE_RECIPIENT,
                service_fee_bps=501,
            )

    def test_construction_requires_operators(
        self, executor: InMemoryExecutor, ledger: GasSponsorshipLedger
    ) -> None:
        with pytest.raises(ValidationError):
            JobOrchestrator(
                executor=executor, ledger=ledger, admin=ADMIN, operators=[], fee_recipient=FEE_RECIPIENT
            )

    @pytest.mark.asyncio
    async def test_minimum_change_applies_to_next_settlement(self, orchestrator: JobOrchestrator) -> None:
        orchestrator.set_minimum_consolidation(200, caller=ADMIN)
        job_id = await _received_job(orchestrator, 105)

        job = await orchestrator.settle(job_id, caller=OPERATOR, gas_cost_estimate=0)

        assert job.failure_reason == "below minimum"

    @pytest.mark.asyncio
    async def test_operator_management(
        self, orchestrator: JobOrchestrator, ledger: GasSponsorshipLedger
    ) -> None:
        orchestrator.set_operator(STRANGER, True, caller=ADMIN)
        await orchestrator.create_job(USER, "USDC", 100, [1], caller=STRANGER)

        orchestrator.set_operator(STRANGER, False, caller=ADMIN)
        with pytest.raises(UnauthorizedError):
            await orchestrator.create_job(USER, "USDC", 100, [1], caller=STRANGER)
        with pytest.raises(UnauthorizedError):
            await ledger.sponsor(USER, "0x" + "01" * 32, GAS_UNITS, GAS_BASIS, caller=STRANGER)

    def test_last_operator_cannot_be_removed(self, orchestrator: JobOrchestrator) -> None:
        with pytest.raises(ValidationError, match="last operator"):
            orchestrator.set_operator(OPERATOR, False, caller=ADMIN)
