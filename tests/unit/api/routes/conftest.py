"""Shared fixtures for API route tests.

Each test gets a fresh application wired through the real lifespan, with
events and tracing disabled so nothing leaves the process.
"""

from collections.abc import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dust_consolidator.core.config import Settings
from dust_consolidator.main import create_app
from tests.support import (
    ADMIN,
    ARBITRUM_SELECTOR,
    CONSOLIDATOR,
    FEE_RECIPIENT,
    MIN_CONSOLIDATION,
    OPERATOR,
    TRUSTED_SENDER,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        admin_address=ADMIN,
        operator_addresses=[OPERATOR],
        fee_recipient=FEE_RECIPIENT,
        consolidator_address=CONSOLIDATOR,
        trusted_senders={ARBITRUM_SELECTOR: TRUSTED_SENDER},
        minimum_consolidation_amount=MIN_CONSOLIDATION,
        sponsorship_per_user_cap_wei=5 * 10**16,
        sponsorship_per_job_cap_wei=10**16,
        sponsorship_min_interval_s=300,
        sponsorship_initial_pool_wei=10**18,
        events_enabled=False,
        tracing_enabled=False,
        log_level="WARNING",
    )

@pytest.fixture
def app(settings: Settings) -> FastAPI:
    return create_app(settings)

@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client
