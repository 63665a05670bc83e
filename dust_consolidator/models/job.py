"""Consolidation job entity and its status transition graph.

Patterns applied:
- Dataclass with field(default_factory=...) for mutable defaults
- str Enum for JSON-friendly status values
- Frozen snapshot returned to readers, mutable record owned by the orchestrator
"""

from __future__ import annotations

import copy
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from eth_utils import keccak, to_bytes, to_canonical_address


class JobStatus(str, Enum):
    """Lifecycle states of a consolidation job."""

    CREATED = "created"
    RECEIVING = "receiving"
    SWAPPING = "swapping"
    SETTLING = "settling"
    COMPLETE = "complete"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        """COMPLETE and REFUNDED never change again; FAILED only to REFUNDED."""
        return self in TERMINAL_STATUSES


# Forward-only transition graph
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.CREATED: frozenset({JobStatus.RECEIVING, JobStatus.FAILED}),
    JobStatus.RECEIVING: frozenset(
        {JobStatus.SWAPPING, JobStatus.SETTLING, JobStatus.FAILED}
    ),
    JobStatus.SWAPPING: frozenset({JobStatus.SETTLING, JobStatus.FAILED}),
    JobStatus.SETTLING: frozenset({JobStatus.COMPLETE, JobStatus.FAILED}),
    JobStatus.COMPLETE: frozenset(),
    JobStatus.FAILED: frozenset({JobStatus.REFUNDED}),
    JobStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.REFUNDED}
)

# Failure reasons surfaced to operators
REASON_BELOW_MINIMUM = "below minimum"
REASON_INSUFFICIENT_FOR_FEES = "insufficient for fees"


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Check whether ``current -> target`` is an edge of the graph.

    Staying in RECEIVING or SWAPPING is allowed so repeated deliveries and
    repeated swaps do not count as regressions.
    """
    if current == target:
        return current in (JobStatus.RECEIVING, JobStatus.SWAPPING)
    return target in TRANSITIONS[current]


def derive_job_id(user: str, created_at: int, nonce: int) -> str:
    """Derive a collision-free job id without a central counter.

    ``keccak256(user || created_at || nonce)`` with ``user`` as its 20 raw
    bytes and both integers as 32-byte big-endian words.

    Args:
        user: Owning user address.
        created_at: Creation time in unix seconds.
        nonce: Per-user job sequence number.

    Returns:
        0x-prefixed 32-byte hex id.
    """
    packed = (
        to_canonical_address(user)
        + to_bytes(created_at).rjust(32, b"\x00")
        + to_bytes(nonce).rjust(32, b"\x00")
    )
    return "0x" + keccak(packed).hex()


@dataclass
class ConsolidationJob:
    """A single user's end-to-end consolidation request.

    Attributes:
        job_id: Deterministic job identifier.
        user: Owning user address (checksummed).
        target_asset: Settlement asset symbol (e.g. "USDC").
        expected_amount: Expected total input value.
        source_chains: Chain ids the job draws from.
        status: Current lifecycle status.
        received_amount: Cumulative amount delivered by the bridge.
        swapped_amount: Cumulative output of executed swaps.
        net_amount: Amount paid out to the user (set once, on COMPLETE).
        gas_cost: Gas cost deducted at settlement (settlement units).
        service_fee: Fee charged at settlement.
        refunded_amount: Amount returned on refund.
        holdings: Token address -> amount currently held for this job.
        failure_reason: Human-readable reason when FAILED.
        created_at: Creation time (unix seconds).
        completed_at: Time the job reached a terminal status.
    """

    job_id: str
    user: str
    target_asset: str
    expected_amount: int
    source_chains: list[int]
    status: JobStatus = JobStatus.CREATED
    received_amount: int = 0
    swapped_amount: int = 0
    net_amount: int | None = None
    gas_cost: int = 0
    service_fee: int = 0
    refunded_amount: int = 0
    holdings: dict[str, int] = field(default_factory=dict)
    failure_reason: str | None = None
    created_at: int = field(default_factory=lambda: int(time.time()))
    completed_at: int | None = None

    @property
    def settlement_total(self) -> int:
        """Amount the settlement is computed on."""
        return self.swapped_amount if self.swapped_amount > 0 else self.received_amount

    def held(self, asset: str) -> int:
        """Amount of ``asset`` currently held for this job."""
        return self.holdings.get(asset, 0)

    def copy(self) -> ConsolidationJob:
        """Deep copy used both for rollback snapshots and read projections."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict projection with the status flattened to its value."""
        data = asdict(self)
        data["status"] = self.status.value
        return data
