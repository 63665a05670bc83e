"""Gas sponsorship records and limits."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from dust_consolidator.core.constants import (
    DEFAULT_MIN_JOB_INTERVAL_SECONDS,
    DEFAULT_PER_JOB_CAP_WEI,
    DEFAULT_PER_USER_CAP_WEI,
    WEI_PER_NATIVE,
)


@dataclass(frozen=True)
class PriceBasis:
    """Pricing inputs used to turn gas units into a settlement cost.

    Attributes:
        gas_price_wei: Gas price in wei per gas unit.
        native_price: Settlement-asset base units per one whole native token.
    """

    gas_price_wei: int
    native_price: int

    def value_wei(self, gas_units: int) -> int:
        """Native value of ``gas_units`` at this gas price."""
        return gas_units * self.gas_price_wei

    def cost(self, value_wei: int) -> int:
        """Settlement-asset cost of ``value_wei``, truncated."""
        return value_wei * self.native_price // WEI_PER_NATIVE


@dataclass
class GasRecord:
    """Gas sponsored for a single job.

    Attributes:
        job_id: Job the gas was fronted for.
        user: Sponsored user.
        gas_units: Gas units the value was computed from.
        gas_value_wei: Native value sponsored.
        price_basis: Pricing used for the cost.
        cost: Cost in settlement-asset units.
        recovered: Whether settlement has deducted the cost.
        timestamp: When the record was created or last re-costed.
    """

    job_id: str
    user: str
    gas_units: int
    gas_value_wei: int
    price_basis: PriceBasis
    cost: int
    recovered: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class SponsorshipLimits:
    """Process-wide sponsorship caps.

    Attributes:
        per_user_cap_wei: Lifetime cap per user.
        per_job_cap_wei: Cap for a single job.
        min_interval_s: Minimum seconds between a user's sponsored jobs.
    """

    per_user_cap_wei: int = DEFAULT_PER_USER_CAP_WEI
    per_job_cap_wei: int = DEFAULT_PER_JOB_CAP_WEI
    min_interval_s: int = DEFAULT_MIN_JOB_INTERVAL_SECONDS


@dataclass
class UserSponsorship:
    """Per-user sponsorship counters."""

    cumulative_wei: int = 0
    job_count: int = 0
    last_sponsored_at: float | None = None


@dataclass(frozen=True)
class LedgerStats:
    """Snapshot of pool-level accounting."""

    pool_balance_wei: int
    total_sponsored_wei: int
    total_recovered: int
    outstanding_cost: int
    record_count: int
