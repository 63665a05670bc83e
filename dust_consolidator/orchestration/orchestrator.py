"""Consolidation job orchestrator.

Drives each job through its lifecycle:

    CREATED → RECEIVING → SWAPPING → SETTLING → COMPLETE
                  │           │          │
                  └───────────┴──────────┴──→ FAILED → REFUNDED

Mutations of one job are serialized by a per-job ``asyncio.Lock``; different
jobs proceed concurrently. Every mutating operation takes the caller's
identity and rejects anyone outside the operator set.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

from dust_consolidator.core.access import AccessControl, normalize_address
from dust_consolidator.core.chains import (
    TARGET_ASSETS,
    get_chain,
    supported_chain_ids,
    token_address,
)
from dust_consolidator.core.constants import (
    BPS_DENOMINATOR,
    DEFAULT_DESTINATION_CHAIN_ID,
    DEFAULT_MIN_CONSOLIDATION_AMOUNT,
    DEFAULT_SERVICE_FEE_BPS,
    MAX_SERVICE_FEE_BPS,
)
from dust_consolidator.core.exceptions import (
    ConsolidatorError,
    InvalidJobStateError,
    InvariantViolationError,
    JobNotFoundError,
    NoRouteAvailableError,
    PayoutFailedError,
    SlippageExceededError,
    SwapExecutionError,
    UnsupportedChainError,
    ValidationError,
)
from dust_consolidator.core.logging import get_logger, job_context
from dust_consolidator.models.job import (
    REASON_BELOW_MINIMUM,
    REASON_INSUFFICIENT_FOR_FEES,
    ConsolidationJob,
    JobStatus,
    can_transition,
    derive_job_id,
)
from dust_consolidator.models.quote import ExecutionPayload
from dust_consolidator.observability.tracing import get_tracer, set_amount_attribute, set_job_attributes
from dust_consolidator.orchestration.saga import CompensationFailedError, Saga, SagaStep
from dust_consolidator.quotes.aggregator import QuoteAggregator
from dust_consolidator.services.events import JobEventPublisher
from dust_consolidator.services.executor import ChainExecutor, Transfer
from dust_consolidator.services.ledger import GasSponsorshipLedger


logger = get_logger(__name__)
tracer = get_tracer(__name__)


# =============================================================================
# Constants
# =============================================================================

RECEIVABLE_STATUSES = (JobStatus.CREATED, JobStatus.RECEIVING, JobStatus.SWAPPING)
SWAPPABLE_STATUSES = (JobStatus.RECEIVING, JobStatus.SWAPPING)
SETTLEABLE_STATUSES = (JobStatus.RECEIVING, JobStatus.SWAPPING)

REASON_PAYOUT_FAILED = "payout failed"


class JobOrchestrator:
    """Owns consolidation jobs and every state change applied to them.

    Attributes:
        service_fee_bps: Fee charged at settlement (admin-mutable).
        minimum_consolidation_amount: Settlement floor (admin-mutable).
        fee_recipient: Recipient of the service fee.
        destination_chain_id: Chain holding custody and paying out.
        custody_address: Address holding custody; routed swaps are quoted
            for it as taker.
    """

    def __init__(
        self,
        executor: ChainExecutor,
        ledger: GasSponsorshipLedger,
        admin: str,
        operators: Iterable[str],
        fee_recipient: str,
        aggregator: QuoteAggregator | None = None,
        service_fee_bps: int = DEFAULT_SERVICE_FEE_BPS,
        minimum_consolidation_amount: int = DEFAULT_MIN_CONSOLIDATION_AMOUNT,
        destination_chain_id: int = DEFAULT_DESTINATION_CHAIN_ID,
        publisher: JobEventPublisher | None = None,
        custody_address: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        operators = list(operators)
        if not operators:
            raise ValidationError("at least one operator is required", field="operators")
        if not 0 <= service_fee_bps <= MAX_SERVICE_FEE_BPS:
            raise ValidationError(
                f"service fee must be within 0..{MAX_SERVICE_FEE_BPS} bps",
                field="service_fee_bps",
                value=service_fee_bps,
            )
        if get_chain(destination_chain_id) is None:
            raise UnsupportedChainError(
                f"unknown destination chain {destination_chain_id}",
                chain_id=destination_chain_id,
            )

        self._executor = executor
        self._ledger = ledger
        self._aggregator = aggregator
        self._access = AccessControl(admin, operators)
        self._publisher = publisher
        self._clock = clock

        self.fee_recipient = normalize_address(fee_recipient, "fee_recipient")
        self.service_fee_bps = service_fee_bps
        self.minimum_consolidation_amount = minimum_consolidation_amount
        self.destination_chain_id = destination_chain_id
        self.custody_address = (
            normalize_address(custody_address, "custody_address") if custody_address else None
        )

        self._jobs: dict[str, ConsolidationJob] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._nonces: dict[str, int] = defaultdict(int)

    # =========================================================================
    # Job Creation & Reads
    # =========================================================================

    async def create_job(
        self,
        user: str,
        target_asset: str,
        expected_amount: int,
        source_chains: list[int],
        caller: str | None,
    ) -> str:
        """Open a new job in CREATED.

        Args:
            user: Owning user address.
            target_asset: Settlement asset symbol ("USDC" or "WETH").
            expected_amount: Expected total input value (> 0).
            source_chains: Chains the job draws dust from (non-empty).
            caller: Operator identity.

        Returns:
            The derived job id.
        """
        self._access.require(caller, "create jobs")
        user = normalize_address(user, "user")
        target_asset = target_asset.upper()
        if target_asset not in TARGET_ASSETS:
            raise ValidationError(
                f"target asset must be one of {sorted(TARGET_ASSETS)}",
                field="target_asset",
                value=target_asset,
            )
        if token_address(target_asset, self.destination_chain_id) is None:
            raise ValidationError(
                f"{target_asset} is not available on the destination chain",
                field="target_asset",
                value=target_asset,
            )
        if expected_amount <= 0:
            raise ValidationError(
                "expected_amount must be positive", field="expected_amount", value=expected_amount
            )
        if not source_chains:
            raise ValidationError("source_chains must not be empty", field="source_chains")
        supported = supported_chain_ids()
        for chain_id in source_chains:
            if chain_id not in supported:
                raise UnsupportedChainError(f"chain {chain_id} is not supported", chain_id=chain_id)

        created_at = int(self._clock())
        nonce = self._nonces[user]
        job_id = derive_job_id(user, created_at, nonce)
        if job_id in self._jobs:
            logger.error("Job id collision", job_id=job_id, user=user, nonce=nonce)
            raise InvariantViolationError(f"job id collision for {job_id}")
        self._nonces[user] = nonce + 1

        job = ConsolidationJob(
            job_id=job_id,
            user=user,
            target_asset=target_asset,
            expected_amount=expected_amount,
            source_chains=list(dict.fromkeys(source_chains)),
            created_at=created_at,
        )
        self._jobs[job_id] = job
        logger.info(
            "Job created",
            job_id=job_id,
            user=user,
            target_asset=target_asset,
            expected_amount=expected_amount,
            source_chains=job.source_chains,
        )
        await self._publish("job.created", job)
        return job_id

    def get_job(self, job_id: str) -> ConsolidationJob:
        """Return a snapshot of the job; mutating it has no effect.

        Raises:
            JobNotFoundError: No job with that id.
        """
        return self._require_job(job_id).copy()

    def list_jobs(self, user: str | None = None) -> list[ConsolidationJob]:
        """Snapshots of all jobs (optionally one user's), oldest first."""
        jobs: Iterable[ConsolidationJob] = self._jobs.values()
        if user is not None:
            owner = normalize_address(user, "user")
            jobs = (j for j in jobs if j.user == owner)
        return [j.copy() for j in sorted(jobs, key=lambda j: j.created_at)]

    def require_operator(self, caller: str | None, action: str) -> str:
        """Return the checksummed caller when it is in the operator set."""
        return self._access.require(caller, action)

    def target_token(self, job: ConsolidationJob) -> str:
        """Destination-chain address of the job's settlement asset."""
        address = token_address(job.target_asset, self.destination_chain_id)
        if address is None:
            raise InvariantViolationError(
                f"{job.target_asset} has no address on chain {self.destination_chain_id}"
            )
        return normalize_address(address)

    # =========================================================================
    # Receipts
    # =========================================================================

    async def record_receipt(
        self,
        job_id: str,
        source_chain: int,
        asset: str,
        amount: int,
        caller: str | None,
    ) -> ConsolidationJob:
        """Account for tokens delivered to custody for a job.

        The first receipt moves CREATED → RECEIVING; later receipts (also
        during SWAPPING) only accumulate.
        """
        self._access.require(caller, "record receipts")
        asset = normalize_address(asset, "asset")
        if amount <= 0:
            raise ValidationError("amount must be positive", field="amount", value=amount)
        if source_chain not in supported_chain_ids():
            raise UnsupportedChainError(f"chain {source_chain} is not supported", chain_id=source_chain)

        async with self._locks[job_id]:
            job = self._require_job(job_id)
            self._require_status(job, RECEIVABLE_STATUSES, "record a receipt")

            await self._executor.acknowledge_delivery(asset, amount)
            job.received_amount += amount
            job.holdings[asset] = job.held(asset) + amount
            if job.status == JobStatus.CREATED:
                self._transition(job, JobStatus.RECEIVING)

            logger.info(
                "Receipt recorded",
                job_id=job_id,
                source_chain=source_chain,
                asset=asset,
                amount=amount,
                received_amount=job.received_amount,
            )
            await self._publish("job.receipt", job)
            return job.copy()

    # =========================================================================
    # Swaps
    # =========================================================================

    async def execute_swap(
        self,
        job_id: str,
        from_asset: str,
        amount: int,
        min_output_amount: int,
        payload: ExecutionPayload,
        caller: str | None,
    ) -> int:
        """Swap part of a job's holdings into its settlement asset.

        Output is the settlement-asset amount the executor reports for this
        swap alone. When the call fails or the output is under
        ``min_output_amount`` the swap's custody changes are reverted and the
        job is unchanged.

        Returns:
            Amount of settlement asset received.

        Raises:
            SlippageExceededError: Output under the floor.
            SwapExecutionError: The swap call failed.
        """
        self._access.require(caller, "execute swaps")
        from_asset = normalize_address(from_asset, "from_asset")
        if amount <= 0:
            raise ValidationError("amount must be positive", field="amount", value=amount)
        if min_output_amount < 0:
            raise ValidationError(
                "min_output_amount must be non-negative",
                field="min_output_amount",
                value=min_output_amount,
            )

        async with self._locks[job_id]:
            job = self._require_job(job_id)
            self._require_status(job, SWAPPABLE_STATUSES, "swap")
            target = self.target_token(job)

            if from_asset == target:
                raise ValidationError(
                    "cannot swap the settlement asset into itself", field="from_asset", value=from_asset
                )
            if amount > job.held(from_asset):
                raise ValidationError(
                    f"job holds {job.held(from_asset)} of {from_asset}, cannot swap {amount}",
                    field="amount",
                    value=amount,
                )
            if (
                normalize_address(payload.sell_asset) != from_asset
                or normalize_address(payload.buy_asset) != target
                or payload.sell_amount != amount
            ):
                raise ValidationError("execution payload does not match the swap", field="payload")

            with job_context(job_id), tracer.start_as_current_span("orchestrator.execute_swap") as span:
                set_job_attributes(span, job)
                span.set_attribute("swap.source", payload.source)
                set_amount_attribute(span, "swap.amount_in", amount)
                amount_out = await self._run_swap(job_id, target, payload, min_output_amount)
                set_amount_attribute(span, "swap.amount_out", amount_out)

            job.holdings[from_asset] -= amount
            if job.holdings[from_asset] == 0:
                del job.holdings[from_asset]
            job.holdings[target] = job.held(target) + amount_out
            job.swapped_amount += amount_out
            self._transition(job, JobStatus.SWAPPING)

            logger.info(
                "Swap executed",
                job_id=job_id,
                source=payload.source,
                amount_in=amount,
                amount_out=amount_out,
                min_output_amount=min_output_amount,
                swapped_amount=job.swapped_amount,
            )
            await self._publish("job.swapped", job)
            return amount_out

    async def _run_swap(
        self,
        job_id: str,
        target: str,
        payload: ExecutionPayload,
        min_output_amount: int,
    ) -> int:
        executor = self._executor

        async def take_snapshot(_state: dict[str, Any]) -> int:
            return await executor.snapshot([payload.sell_asset, target])

        async def restore_snapshot(state: dict[str, Any]) -> None:
            await executor.revert(state["snapshot"])

        async def dispatch(state: dict[str, Any]) -> int:
            return await executor.execute(payload, snapshot_id=state["snapshot"])

        async def verify_output(state: dict[str, Any]) -> int:
            amount_out = state["dispatch"]
            if amount_out < min_output_amount:
                raise SlippageExceededError(
                    f"swap returned {amount_out}, below minimum {min_output_amount}",
                    job_id=job_id,
                    amount_out=amount_out,
                    min_output_amount=min_output_amount,
                )
            return amount_out

        async def commit(state: dict[str, Any]) -> None:
            await executor.commit(state["snapshot"])

        saga = (
            Saga("swap")
            .add_step(SagaStep("snapshot", take_snapshot, compensate=restore_snapshot))
            .add_step(SagaStep("dispatch", dispatch))
            .add_step(SagaStep("verify", verify_output))
            .add_step(SagaStep("commit", commit))
        )

        try:
            state = await saga.execute()
        except ConsolidatorError:
            raise
        except CompensationFailedError as e:
            logger.error("Custody rollback failed", job_id=job_id, error=str(e))
            raise InvariantViolationError(f"custody rollback failed for job {job_id}") from e
        except Exception as e:
            raise SwapExecutionError(f"swap via {payload.source} failed: {e}", job_id=job_id) from e
        return state["verify"]

    async def swap_with_best_route(
        self,
        job_id: str,
        from_asset: str,
        amount: int,
        slippage_bps: int,
        caller: str | None,
        chain_id: int | None = None,
    ) -> int:
        """Quote ``amount`` of ``from_asset`` across every source and swap.

        The floor is the chosen route's net output less ``slippage_bps``.

        Raises:
            NoRouteAvailableError: No source quoted, or none produced calldata.
        """
        self._access.require(caller, "execute swaps")
        if self._aggregator is None:
            raise NoRouteAvailableError("no quote aggregator configured")
        if not 0 <= slippage_bps <= BPS_DENOMINATOR:
            raise ValidationError(
                "slippage_bps must be within 0..10000", field="slippage_bps", value=slippage_bps
            )

        # Unlocked pre-check so no quote is fetched for a job that cannot
        # swap; execute_swap re-checks under the job lock.
        job = self._require_job(job_id)
        self._require_status(job, SWAPPABLE_STATUSES, "swap")
        chain_id = chain_id or self.destination_chain_id

        best = await self._aggregator.best_quote(
            chain_id, from_asset, self.target_token(job), amount, taker=self.custody_address
        )
        if best is None:
            raise NoRouteAvailableError(f"no route for {from_asset} on chain {chain_id}", chain_id=chain_id)

        resolved = await self._aggregator.resolve_execution(best)
        if resolved is None:
            raise NoRouteAvailableError(
                f"no source produced calldata for {from_asset}", chain_id=chain_id
            )
        quote, payload = resolved
        min_output = quote.net_output * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR

        return await self.execute_swap(job_id, from_asset, amount, min_output, payload, caller)

    # =========================================================================
    # Settlement
    # =========================================================================

    async def settle(
        self,
        job_id: str,
        caller: str | None,
        gas_cost_estimate: int | None = None,
    ) -> ConsolidationJob:
        """Pay out a job: net to the user, fee to the fee recipient.

        ``total`` is the swapped amount when any swap happened, else the
        received amount. A total under the minimum or not covering gas plus
        fee fails the job; that is a normal outcome, not an exception.

        Args:
            job_id: Job to settle.
            caller: Operator identity.
            gas_cost_estimate: Gas cost in settlement units; defaults to the
                ledger's recorded cost for the job (0 when unsponsored).

        Returns:
            Snapshot of the job, COMPLETE or FAILED.
        """
        self._access.require(caller, "settle jobs")
        if gas_cost_estimate is not None and gas_cost_estimate < 0:
            raise ValidationError(
                "gas_cost_estimate must be non-negative",
                field="gas_cost_estimate",
                value=gas_cost_estimate,
            )

        async with self._locks[job_id]:
            job = self._require_job(job_id)
            self._require_status(job, SETTLEABLE_STATUSES, "settle")

            with job_context(job_id), tracer.start_as_current_span("orchestrator.settle") as span:
                await self._settle_locked(job, caller, gas_cost_estimate)
                set_job_attributes(span, job)

            await self._publish(f"job.{job.status.value}", job)
            return job.copy()

    async def _settle_locked(
        self,
        job: ConsolidationJob,
        caller: str | None,
        gas_cost_estimate: int | None,
    ) -> None:
        total = job.settlement_total
        if total < self.minimum_consolidation_amount:
            self._fail(job, REASON_BELOW_MINIMUM)
            return

        record = self._ledger.assert_recoverable(job.job_id, caller)
        if gas_cost_estimate is not None:
            gas = gas_cost_estimate
        else:
            gas = record.cost if record is not None else 0

        fee = total * self.service_fee_bps // BPS_DENOMINATOR
        if total <= gas + fee:
            self._fail(job, REASON_INSUFFICIENT_FOR_FEES)
            return
        net = total - gas - fee

        target = self.target_token(job)
        if job.held(target) < total:
            raise InvalidJobStateError(
                f"job holds {job.held(target)} of {job.target_asset}, needs {total}; "
                "swap remaining holdings first",
                job_id=job.job_id,
                status=job.status.value,
            )

        self._transition(job, JobStatus.SETTLING)
        transfers = [Transfer(recipient=job.user, amount=net)]
        if fee > 0:
            transfers.append(Transfer(recipient=self.fee_recipient, amount=fee))
        try:
            await self._executor.transfer_batch(target, transfers)
        except Exception as e:
            logger.error("Settlement payout failed", job_id=job.job_id, error=str(e))
            self._fail(job, f"{REASON_PAYOUT_FAILED}: {e}")
            return

        job.holdings[target] -= total
        if job.holdings[target] == 0:
            del job.holdings[target]
        job.gas_cost = gas
        job.service_fee = fee
        job.net_amount = net
        job.completed_at = int(self._clock())
        self._transition(job, JobStatus.COMPLETE)
        logger.info(
            "Job settled",
            job_id=job.job_id,
            total=total,
            gas_cost=gas,
            service_fee=fee,
            net_amount=net,
        )

        if record is not None:
            await self._ledger.mark_recovered(job.job_id, caller)

    # =========================================================================
    # Failure & Refund
    # =========================================================================

    async def mark_failed(self, job_id: str, reason: str, caller: str | None) -> ConsolidationJob:
        """Fail a non-terminal job for an externally decided reason."""
        self._access.require(caller, "fail jobs")
        if not reason:
            raise ValidationError("reason must not be empty", field="reason")

        async with self._locks[job_id]:
            job = self._require_job(job_id)
            if job.status.is_terminal:
                raise InvalidJobStateError(
                    f"job is already {job.status.value}",
                    job_id=job_id,
                    status=job.status.value,
                )
            self._fail(job, reason)
            await self._publish("job.failed", job)
            return job.copy()

    async def refund(self, job_id: str, caller: str | None) -> ConsolidationJob:
        """Return everything held for a FAILED job to its user.

        Every held asset is paid out in one all-or-nothing transfer; on
        failure nothing moves and the job stays FAILED with its holdings.

        Raises:
            PayoutFailedError: Custody rejected the refund.
        """
        self._access.require(caller, "refund jobs")

        async with self._locks[job_id]:
            job = self._require_job(job_id)
            self._require_status(job, (JobStatus.FAILED,), "refund")

            held = {asset: amount for asset, amount in job.holdings.items() if amount > 0}
            if held:
                try:
                    await self._executor.transfer_assets(job.user, held)
                except Exception as e:
                    logger.error("Refund payout failed", job_id=job_id, error=str(e))
                    raise PayoutFailedError(f"refund of job {job_id} failed: {e}", job_id=job_id) from e
            job.holdings.clear()

            job.refunded_amount = job.settlement_total
            self._transition(job, JobStatus.REFUNDED)
            logger.info("Job refunded", job_id=job_id, refunded_amount=job.refunded_amount)
            await self._publish("job.refunded", job)
            return job.copy()

    # =========================================================================
    # Administration
    # =========================================================================

    def set_service_fee(self, fee_bps: int, caller: str | None) -> None:
        self._access.require_admin(caller, "set the service fee")
        if not 0 <= fee_bps <= MAX_SERVICE_FEE_BPS:
            raise ValidationError(
                f"service fee must be within 0..{MAX_SERVICE_FEE_BPS} bps",
                field="fee_bps",
                value=fee_bps,
            )
        self.service_fee_bps = fee_bps
        if self._aggregator is not None:
            self._aggregator.service_fee_bps = fee_bps
        logger.info("Service fee updated", fee_bps=fee_bps)

    def set_minimum_consolidation(self, amount: int, caller: str | None) -> None:
        self._access.require_admin(caller, "set the minimum consolidation")
        if amount < 0:
            raise ValidationError("minimum must be non-negative", field="amount", value=amount)
        self.minimum_consolidation_amount = amount
        logger.info("Minimum consolidation updated", amount=amount)

    def set_operator(self, address: str, allowed: bool, caller: str | None) -> None:
        """Grant or revoke operator rights; the ledger's sponsor set follows."""
        self._access.require_admin(caller, "manage operators")
        address = normalize_address(address)
        if not allowed and self._access.authorized == {address}:
            raise ValidationError("cannot remove the last operator", field="address", value=address)
        self._ledger.authorize_sponsor(address, allowed, caller)
        self._access.set_authorized(address, allowed)
        logger.info("Operator authorization changed", address=address, allowed=allowed)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_job(self, job_id: str) -> ConsolidationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    @staticmethod
    def _require_status(
        job: ConsolidationJob, allowed: tuple[JobStatus, ...], action: str
    ) -> None:
        if job.status not in allowed:
            raise InvalidJobStateError(
                f"cannot {action} a job in status {job.status.value}",
                job_id=job.job_id,
                status=job.status.value,
                expected=[s.value for s in allowed],
            )

    def _transition(self, job: ConsolidationJob, target: JobStatus) -> None:
        if not can_transition(job.status, target):
            raise InvalidJobStateError(
                f"illegal transition {job.status.value} -> {target.value}",
                job_id=job.job_id,
                status=job.status.value,
                expected=[target.value],
            )
        if job.status != target:
            logger.info(
                "Job transition",
                job_id=job.job_id,
                from_status=job.status.value,
                status=target.value,
            )
        job.status = target

    def _fail(self, job: ConsolidationJob, reason: str) -> None:
        self._transition(job, JobStatus.FAILED)
        job.failure_reason = reason
        job.completed_at = int(self._clock())
        logger.info("Job failed", job_id=job.job_id, reason=reason)

    async def _publish(self, event_type: str, job: ConsolidationJob) -> None:
        if self._publisher is not None:
            await self._publisher.publish(event_type, job.to_dict())
