"""Tests for the FastAPI application factory and lifespan.

Tests verify:
- The module-level app is a configured FastAPI instance
- Lifespan wires every component onto app.state and clears it on shutdown
- The correlation-id middleware echoes or generates X-Request-ID
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dust_consolidator.core.config import Settings
from dust_consolidator.main import create_app
from dust_consolidator.orchestration.orchestrator import JobOrchestrator
from dust_consolidator.quotes.aggregator import QuoteAggregator
from dust_consolidator.services.executor import InMemoryExecutor
from dust_consolidator.services.gateway import CrossChainGateway
from dust_consolidator.services.ledger import GasSponsorshipLedger


@pytest.fixture
def app() -> FastAPI:
    return create_app(Settings(log_level="WARNING", events_enabled=False, tracing_enabled=False))


class TestAppInstance:
    """Test FastAPI app instance creation."""

    def test_module_app_is_fastapi_instance(self) -> None:
        from dust_consolidator.main import app

        assert isinstance(app, FastAPI)
        assert app.title == "dust-consolidator"
        assert app.version

    def test_docs_disabled_in_production(self) -> None:
        app = create_app(Settings(environment="production"))
        assert app.docs_url is None
        assert app.redoc_url is None


class TestAppLifespan:
    """Test FastAPI lifespan context manager."""

    def test_components_attached_on_startup(self, app: FastAPI) -> None:
        with TestClient(app):
            assert isinstance(app.state.orchestrator, JobOrchestrator)
            assert isinstance(app.state.aggregator, QuoteAggregator)
            assert isinstance(app.state.ledger, GasSponsorshipLedger)
            assert isinstance(app.state.executor, InMemoryExecutor)
            assert isinstance(app.state.gateway, CrossChainGateway)
            assert app.state.publisher is None

    def test_orchestrator_cleared_on_shutdown(self, app: FastAPI) -> None:
        with TestClient(app):
            pass
        assert app.state.orchestrator is None


class TestCorrelationId:
    def test_request_id_echoed(self, app: FastAPI) -> None:
        with TestClient(app) as client:
            response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, app: FastAPI) -> None:
        with TestClient(app) as client:
            response = client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 32
