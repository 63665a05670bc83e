"""pytest configuration and fixtures for dust-consolidator tests.

Shared identities, a deterministic clock, and pre-wired orchestrator
components backed by the in-memory executor.
"""

from __future__ import annotations

import pytest

from dust_consolidator.core.logging import configure_logging
from dust_consolidator.models.gas import SponsorshipLimits
from dust_consolidator.orchestration.orchestrator import JobOrchestrator
from dust_consolidator.services.executor import InMemoryExecutor
from dust_consolidator.services.ledger import GasSponsorshipLedger
from tests.support import (
    ADMIN,
    BASE_CHAIN_ID,
    FEE_RECIPIENT,
    MIN_CONSOLIDATION,
    OPERATOR,
    START_TIME,
)


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom pytest markers and quiet logging."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    configure_logging(level="WARNING", force=True)


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def executor() -> InMemoryExecutor:
    return InMemoryExecutor()


@pytest.fixture
def limits() -> SponsorshipLimits:
    return SponsorshipLimits(
        per_user_cap_wei=5 * 10**16,
        per_job_cap_wei=10**16,
        min_interval_s=300,
    )


@pytest.fixture
def ledger(limits: SponsorshipLimits, clock: FakeClock) -> GasSponsorshipLedger:
    return GasSponsorshipLedger(
        admin=ADMIN,
        sponsors=[OPERATOR],
        limits=limits,
        initial_pool_wei=10**18,
        clock=clock,
    )


@pytest.fixture
def orchestrator(
    executor: InMemoryExecutor,
    ledger: GasSponsorshipLedger,
    clock: FakeClock,
) -> JobOrchestrator:
    return JobOrchestrator(
        executor=executor,
        ledger=ledger,
        admin=ADMIN,
        operators=[OPERATOR],
        fee_recipient=FEE_RECIPIENT,
        service_fee_bps=120,
        minimum_consolidation_amount=MIN_CONSOLIDATION,
        destination_chain_id=BASE_CHAIN_ID,
        clock=clock,
    )
