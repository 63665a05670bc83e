"""
OpenTelemetry tracing for the consolidation service.

A consolidation is traced as one tree: the operator's HTTP request (server
span from ``TracingMiddleware``), the job-locked orchestrator step beneath it
(``orchestrator.execute_swap`` / ``orchestrator.settle``), and the fan-out to
quote sources, whose outbound requests carry the W3C ``traceparent`` injected
by ``inject_trace_context``.

Job spans are tagged through ``set_job_attributes``. OTel integer attributes
are signed 64-bit, so base-unit token amounts that do not fit are recorded
as decimal strings by ``set_amount_attribute``.
"""

from typing import Any, Callable, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.propagate import extract, inject
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, SpanKind, Tracer

from dust_consolidator.models.job import ConsolidationJob

_INT64_MAX = 2**63 - 1

# Global tracer provider reference
_tracer_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str = "dust-consolidator",
    otlp_endpoint: Optional[str] = None,
) -> TracerProvider:
    """
    Configure the OpenTelemetry TracerProvider.

    Args:
        service_name: Name of the service for resource identification
        otlp_endpoint: OTLP gRPC endpoint; spans go to the console when unset

    Returns:
        Configured TracerProvider
    """
    global _tracer_provider

    resource = Resource.create({SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
    else:
        exporter = ConsoleSpanExporter()

    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _tracer_provider = provider

    return provider


def shutdown_tracing() -> None:
    """Flush and drop the provider installed by setup_tracing."""
    global _tracer_provider

    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        _tracer_provider = None


def get_tracer(name: str = __name__) -> Tracer:
    """Get a named tracer instance."""
    return trace.get_tracer(name)


def inject_trace_context(headers: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Inject trace context into headers for outbound requests."""
    carrier = headers if headers is not None else {}
    inject(carrier)
    return carrier


def extract_trace_context(headers: dict[str, Any]) -> Context:
    """Extract trace context from incoming headers."""
    return extract(headers)


def set_amount_attribute(span: Span, key: str, amount: int) -> None:
    """Record a base-unit amount, as a string when it overflows int64."""
    span.set_attribute(key, amount if abs(amount) <= _INT64_MAX else str(amount))


def set_job_attributes(span: Span, job: ConsolidationJob) -> None:
    """Tag ``span`` with the job's identity, status and running totals."""
    span.set_attribute("job.id", job.job_id)
    span.set_attribute("job.status", job.status.value)
    span.set_attribute("job.target_asset", job.target_asset)
    set_amount_attribute(span, "job.received_amount", job.received_amount)
    set_amount_attribute(span, "job.swapped_amount", job.swapped_amount)
    if job.net_amount:
        set_amount_attribute(span, "job.net_amount", job.net_amount)


def _headers_to_dict(headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
    return {
        key.decode("latin-1").lower(): value.decode("latin-1")
        for key, value in headers
    }


class TracingMiddleware:
    """
    ASGI middleware creating a server span per HTTP request.

    Requests to ``exclude_paths`` (health checks) are passed through untraced.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        exclude_paths: Optional[list[str]] = None,
        tracer_name: str = "dust_consolidator.http",
    ) -> None:
        self.app = app
        self.exclude_paths = exclude_paths or []
        self.tracer = get_tracer(tracer_name)

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[..., Any],
        send: Callable[..., Any],
    ) -> None:
        if scope["type"] != "http" or scope.get("path", "/") in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "/")
        parent_context = extract_trace_context(_headers_to_dict(scope.get("headers", [])))
        status_code = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
            await send(message)

        with self.tracer.start_as_current_span(
            f"{method} {path}",
            context=parent_context,
            kind=SpanKind.SERVER,
        ) as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.route", path)
            try:
                await self.app(scope, receive, send_wrapper)
                span.set_attribute("http.status_code", status_code)
            except Exception as e:
                span.set_attribute("http.status_code", 500)
                span.record_exception(e)
                raise
