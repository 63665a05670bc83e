"""Gas sponsorship ledger.

Fronts destination-chain gas for users out of a shared pool and records the
cost so settlement can recover it from the user's proceeds.

Checks in ``sponsor`` run in a fixed order and every rejection leaves all
counters untouched:

    duplicate record → min interval → per-job cap → per-user cap → pool
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import replace

from dust_consolidator.core.access import AccessControl, normalize_address
from dust_consolidator.core.exceptions import (
    AlreadyRecoveredError,
    GasRecordNotFoundError,
    JobCapExceededError,
    PoolExhaustedError,
    RateLimitExceededError,
    UserCapExceededError,
    ValidationError,
)
from dust_consolidator.core.logging import get_logger
from dust_consolidator.models.gas import (
    GasRecord,
    LedgerStats,
    PriceBasis,
    SponsorshipLimits,
    UserSponsorship,
)


logger = get_logger(__name__)


class GasSponsorshipLedger:
    """Pooled gas sponsorship with per-user and per-job caps.

    Attributes:
        limits: Current sponsorship limits (admin-mutable).
        pool_balance: Native balance available for sponsorship (wei).

    Example:
        ledger = GasSponsorshipLedger(admin=ADMIN, sponsors=[OPERATOR])
        await ledger.credit_pool(10**18, caller=ADMIN)
        cost = await ledger.sponsor(user, job_id, 150_000, basis, caller=OPERATOR)
    """

    def __init__(
        self,
        admin: str,
        sponsors: Iterable[str] = (),
        limits: SponsorshipLimits | None = None,
        initial_pool_wei: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._access = AccessControl(admin, sponsors)
        self.limits = limits or SponsorshipLimits()
        self.pool_balance = initial_pool_wei
        self._clock = clock

        self._records: dict[str, GasRecord] = {}
        self._users: dict[str, UserSponsorship] = defaultdict(UserSponsorship)
        self._user_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._pool_lock = asyncio.Lock()
        self._total_sponsored_wei = 0
        self._total_recovered = 0

    # -------------------------------------------------------------------------
    # Sponsorship
    # -------------------------------------------------------------------------

    async def sponsor(
        self,
        user: str,
        job_id: str,
        estimated_gas_units: int,
        price_basis: PriceBasis,
        caller: str | None,
    ) -> int:
        """Front gas for ``job_id`` and record its settlement-asset cost.

        Args:
            user: Sponsored user address.
            job_id: Job the gas is fronted for (one record per job).
            estimated_gas_units: Gas units to sponsor.
            price_basis: Gas price and native price used for the cost.
            caller: Authorized sponsor identity.

        Returns:
            Cost in settlement-asset units.

        Raises:
            UnauthorizedError: Caller is not an authorized sponsor.
            ValidationError: Non-positive gas or a record already exists.
            RateLimitExceededError: User's previous job is too recent.
            JobCapExceededError: Value exceeds the per-job cap.
            UserCapExceededError: Value would exceed the user's lifetime cap.
            PoolExhaustedError: Pool cannot cover the value.
        """
        self._access.require(caller, "sponsor gas")
        user = normalize_address(user, "user")
        if estimated_gas_units <= 0:
            raise ValidationError(
                "estimated_gas_units must be positive",
                field="estimated_gas_units",
                value=estimated_gas_units,
            )

        value = price_basis.value_wei(estimated_gas_units)
        cost = price_basis.cost(value)

        async with self._user_locks[user]:
            if job_id in self._records:
                raise ValidationError(
                    f"gas already sponsored for job '{job_id}'", field="job_id", value=job_id
                )

            account = self._users[user]
            now = self._clock()
            if account.last_sponsored_at is not None:
                elapsed = now - account.last_sponsored_at
                if elapsed < self.limits.min_interval_s:
                    remaining = self.limits.min_interval_s - elapsed
                    logger.info("Sponsorship rate limited", user=user, remaining_s=remaining)
                    raise RateLimitExceededError(
                        f"next sponsored job allowed in {remaining:.0f}s",
                        user=user,
                        retry_after_ms=int(remaining * 1000),
                    )

            if value > self.limits.per_job_cap_wei:
                raise JobCapExceededError(
                    f"gas value {value} exceeds per-job cap {self.limits.per_job_cap_wei}",
                    requested=value,
                    cap=self.limits.per_job_cap_wei,
                )

            if account.cumulative_wei + value > self.limits.per_user_cap_wei:
                raise UserCapExceededError(
                    f"user cap {self.limits.per_user_cap_wei} would be exceeded",
                    user=user,
                    cap=self.limits.per_user_cap_wei,
                )

            async with self._pool_lock:
                if self.pool_balance < value:
                    raise PoolExhaustedError(
                        f"pool balance {self.pool_balance} below requested {value}",
                        requested=value,
                        available=self.pool_balance,
                    )
                self.pool_balance -= value
                self._total_sponsored_wei += value

            self._records[job_id] = GasRecord(
                job_id=job_id,
                user=user,
                gas_units=estimated_gas_units,
                gas_value_wei=value,
                price_basis=price_basis,
                cost=cost,
                timestamp=now,
            )
            account.cumulative_wei += value
            account.job_count += 1
            account.last_sponsored_at = now

        logger.info("Gas sponsored", job_id=job_id, user=user, value_wei=value, cost=cost)
        return cost

    async def update_cost(
        self,
        job_id: str,
        actual_gas_units: int,
        price_basis: PriceBasis,
        caller: str | None,
    ) -> int:
        """Re-cost an unrecovered record with the gas actually used.

        An upward revision is held to the same per-job and per-user caps as
        ``sponsor``; the delta is applied to the pool and to the user's
        cumulative total. A rejection leaves every counter untouched.

        Returns:
            The new cost in settlement-asset units.

        Raises:
            GasRecordNotFoundError: No record for the job.
            AlreadyRecoveredError: The record was already recovered.
            JobCapExceededError: Revised value exceeds the per-job cap.
            UserCapExceededError: Upward revision breaches the per-user cap.
            PoolExhaustedError: Pool cannot cover an upward revision.
        """
        self._access.require(caller, "update gas cost")
        if actual_gas_units < 0:
            raise ValidationError(
                "actual_gas_units must be non-negative",
                field="actual_gas_units",
                value=actual_gas_units,
            )
        record = self._require_record(job_id)

        async with self._user_locks[record.user]:
            if record.recovered:
                logger.error("Cost update on recovered gas record", job_id=job_id)
                raise AlreadyRecoveredError(job_id)

            value = price_basis.value_wei(actual_gas_units)
            delta = value - record.gas_value_wei
            if delta > 0 and value > self.limits.per_job_cap_wei:
                raise JobCapExceededError(
                    f"revised gas value {value} exceeds per-job cap {self.limits.per_job_cap_wei}",
                    requested=value,
                    cap=self.limits.per_job_cap_wei,
                )
            account = self._users[record.user]
            if delta > 0 and account.cumulative_wei + delta > self.limits.per_user_cap_wei:
                raise UserCapExceededError(
                    f"user cap {self.limits.per_user_cap_wei} would be exceeded by revision",
                    user=record.user,
                    cap=self.limits.per_user_cap_wei,
                )

            async with self._pool_lock:
                if delta > self.pool_balance:
                    raise PoolExhaustedError(
                        f"pool balance {self.pool_balance} below cost increase {delta}",
                        requested=delta,
                        available=self.pool_balance,
                    )
                self.pool_balance -= delta
                self._total_sponsored_wei += delta

            account.cumulative_wei += delta
            record.gas_units = actual_gas_units
            record.gas_value_wei = value
            record.price_basis = price_basis
            record.cost = price_basis.cost(value)
            record.timestamp = self._clock()

        logger.info("Gas cost updated", job_id=job_id, value_wei=value, delta_wei=delta)
        return record.cost

    def assert_recoverable(self, job_id: str, caller: str | None) -> GasRecord | None:
        """Return the unrecovered record for ``job_id`` (None when absent).

        Settlement calls this before paying out, so a caller that could not
        later ``mark_recovered`` is turned away while nothing has moved.

        Raises:
            UnauthorizedError: A record exists and ``caller`` may not recover it.
            AlreadyRecoveredError: The record was already recovered.
        """
        record = self._records.get(job_id)
        if record is None:
            return None
        self._access.require(caller, "mark gas recovered")
        if record.recovered:
            logger.error("Settling a job whose gas was already recovered", job_id=job_id)
            raise AlreadyRecoveredError(job_id)
        return record

    async def mark_recovered(self, job_id: str, caller: str | None) -> GasRecord:
        """Flip the record's ``recovered`` flag; happens exactly once.

        Raises:
            GasRecordNotFoundError: No record for the job.
            AlreadyRecoveredError: Already recovered; totals unchanged.
        """
        self._access.require(caller, "mark gas recovered")
        record = self._require_record(job_id)

        async with self._user_locks[record.user]:
            if record.recovered:
                logger.error("Gas record already recovered", job_id=job_id)
                raise AlreadyRecoveredError(job_id)
            record.recovered = True
            self._total_recovered += record.cost

        logger.info("Gas recovered", job_id=job_id, cost=record.cost)
        return record

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def set_limits(self, limits: SponsorshipLimits, caller: str | None) -> None:
        """Replace sponsorship limits; takes effect for the next request."""
        self._access.require_admin(caller, "set sponsorship limits")
        for name in ("per_user_cap_wei", "per_job_cap_wei", "min_interval_s"):
            if getattr(limits, name) < 0:
                raise ValidationError(f"{name} must be non-negative", field=name)
        self.limits = limits
        logger.info(
            "Sponsorship limits updated",
            per_user_cap_wei=limits.per_user_cap_wei,
            per_job_cap_wei=limits.per_job_cap_wei,
            min_interval_s=limits.min_interval_s,
        )

    async def credit_pool(self, amount_wei: int, caller: str | None) -> int:
        """Add funds to the pool; returns the new balance."""
        self._access.require_admin(caller, "credit the pool")
        if amount_wei <= 0:
            raise ValidationError("amount must be positive", field="amount_wei", value=amount_wei)
        async with self._pool_lock:
            self.pool_balance += amount_wei
            return self.pool_balance

    async def debit_pool(self, amount_wei: int, caller: str | None) -> int:
        """Withdraw funds from the pool; returns the new balance."""
        self._access.require_admin(caller, "debit the pool")
        if amount_wei <= 0:
            raise ValidationError("amount must be positive", field="amount_wei", value=amount_wei)
        async with self._pool_lock:
            if amount_wei > self.pool_balance:
                raise PoolExhaustedError(
                    f"pool balance {self.pool_balance} below withdrawal {amount_wei}",
                    requested=amount_wei,
                    available=self.pool_balance,
                )
            self.pool_balance -= amount_wei
            return self.pool_balance

    def authorize_sponsor(self, address: str, allowed: bool, caller: str | None) -> None:
        self._access.require_admin(caller, "authorize sponsors")
        self._access.set_authorized(address, allowed)
        logger.info("Sponsor authorization changed", address=address, allowed=allowed)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_record(self, job_id: str) -> GasRecord | None:
        return self._records.get(job_id)

    def get_user(self, user: str) -> UserSponsorship:
        account = self._users.get(normalize_address(user, "user"))
        return replace(account) if account is not None else UserSponsorship()

    def stats(self) -> LedgerStats:
        outstanding = sum(r.cost for r in self._records.values() if not r.recovered)
        return LedgerStats(
            pool_balance_wei=self.pool_balance,
            total_sponsored_wei=self._total_sponsored_wei,
            total_recovered=self._total_recovered,
            outstanding_cost=outstanding,
            record_count=len(self._records),
        )

    def _require_record(self, job_id: str) -> GasRecord:
        record = self._records.get(job_id)
        if record is None:
            raise GasRecordNotFoundError(job_id)
        return record
