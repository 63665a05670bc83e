"""FastAPI application entrypoint for dust-consolidator.

Patterns applied:
- asynccontextmanager lifespan wiring every component onto app.state
- configure_logging() called ONCE in lifespan startup
- Health endpoints (/health, /health/ready)
- Docs disabled in production
"""

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response

from dust_consolidator import __version__
from dust_consolidator.api.error_handlers import register_exception_handlers
from dust_consolidator.api.routes.gateway import router as gateway_router
from dust_consolidator.api.routes.health import router as health_router
from dust_consolidator.api.routes.jobs import router as jobs_router
from dust_consolidator.api.routes.quotes import router as quotes_router
from dust_consolidator.api.routes.sponsorship import router as sponsorship_router
from dust_consolidator.core.config import Settings, get_settings
from dust_consolidator.core.logging import configure_logging, get_logger, set_correlation_id
from dust_consolidator.models.gas import SponsorshipLimits
from dust_consolidator.observability.tracing import (
    TracingMiddleware,
    setup_tracing,
    shutdown_tracing,
)
from dust_consolidator.orchestration.orchestrator import JobOrchestrator
from dust_consolidator.quotes import QuoteAggregator, build_default_sources
from dust_consolidator.services.events import JobEventPublisher
from dust_consolidator.services.executor import InMemoryExecutor
from dust_consolidator.services.gateway import CrossChainGateway
from dust_consolidator.services.ledger import GasSponsorshipLedger


# =============================================================================
# Application Metadata
# =============================================================================
APP_NAME = "dust-consolidator"
APP_DESCRIPTION = "Cross-chain dust consolidation orchestrator"
REQUEST_ID_HEADER = "X-Request-ID"
HTTP_TIMEOUT_S = 10.0


# =============================================================================
# Component Wiring
# =============================================================================
def build_components(
    app: FastAPI,
    settings: Settings,
    client: httpx.AsyncClient,
    publisher: JobEventPublisher | None = None,
) -> None:
    """Construct every component and attach it to ``app.state``."""
    aggregator = QuoteAggregator(
        sources=build_default_sources(
            client,
            zero_x_api_key=settings.zero_x_api_key,
            oneinch_api_key=settings.oneinch_api_key,
        ),
        service_fee_bps=settings.service_fee_bps,
        source_timeout_s=settings.quote_source_timeout_s,
        overall_timeout_s=settings.quote_overall_timeout_s,
    )
    ledger = GasSponsorshipLedger(
        admin=settings.admin_address,
        sponsors=settings.operator_addresses,
        limits=SponsorshipLimits(
            per_user_cap_wei=settings.sponsorship_per_user_cap_wei,
            per_job_cap_wei=settings.sponsorship_per_job_cap_wei,
            min_interval_s=settings.sponsorship_min_interval_s,
        ),
        initial_pool_wei=settings.sponsorship_initial_pool_wei,
    )
    executor = InMemoryExecutor()
    orchestrator = JobOrchestrator(
        executor=executor,
        ledger=ledger,
        admin=settings.admin_address,
        operators=settings.operator_addresses,
        fee_recipient=settings.fee_recipient,
        aggregator=aggregator,
        service_fee_bps=settings.service_fee_bps,
        minimum_consolidation_amount=settings.minimum_consolidation_amount,
        destination_chain_id=settings.destination_chain_id,
        publisher=publisher,
        custody_address=settings.consolidator_address,
    )
    gateway = CrossChainGateway(
        orchestrator=orchestrator,
        admin=settings.admin_address,
        receiver=settings.consolidator_address,
        trusted_senders=settings.trusted_senders,
    )

    app.state.settings = settings
    app.state.aggregator = aggregator
    app.state.ledger = ledger
    app.state.executor = executor
    app.state.orchestrator = orchestrator
    app.state.gateway = gateway
    app.state.publisher = publisher


# =============================================================================
# Lifespan Context Manager
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup and shutdown events.

    Args:
        app: FastAPI application instance.

    Yields:
        None after startup, before shutdown.
    """
    # =========================================================================
    # STARTUP
    # =========================================================================
    settings: Settings = getattr(app.state, "settings", None) or get_settings()

    configure_logging(level=settings.log_level)
    logger = get_logger(__name__)

    logger.info(
        "Application starting",
        service=APP_NAME,
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        destination_chain_id=settings.destination_chain_id,
    )

    if settings.tracing_enabled:
        setup_tracing(service_name=settings.service_name, otlp_endpoint=settings.otlp_endpoint)

    publisher: JobEventPublisher | None = None
    if settings.events_enabled:
        publisher = JobEventPublisher(settings.redis_url, source=settings.service_name)
        await publisher.connect()

    client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_S)
    build_components(app, settings, client, publisher)

    yield

    # =========================================================================
    # SHUTDOWN
    # =========================================================================
    logger.info("Application shutting down", service=APP_NAME)
    await client.aclose()
    if publisher is not None:
        await publisher.close()
    if settings.tracing_enabled:
        shutdown_tracing()
    app.state.orchestrator = None


# =============================================================================
# FastAPI Application Factory
# =============================================================================
def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=__version__,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    @app.middleware("http")
    async def correlation_id_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            set_correlation_id(None)
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response

    if settings.tracing_enabled:
        app.add_middleware(TracingMiddleware, exclude_paths=["/health", "/health/ready"])

    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(quotes_router)
    app.include_router(sponsorship_router)
    app.include_router(gateway_router)

    register_exception_handlers(app)
    return app


app = create_app()
