"""Observability package: OpenTelemetry tracing for dust-consolidator."""

from dust_consolidator.observability.tracing import (
    TracingMiddleware,
    extract_trace_context,
    get_tracer,
    inject_trace_context,
    set_amount_attribute,
    set_job_attributes,
    setup_tracing,
    shutdown_tracing,
)

__all__ = [
    "setup_tracing",
    "shutdown_tracing",
    "TracingMiddleware",
    "get_tracer",
    "inject_trace_context",
    "extract_trace_context",
    "set_amount_attribute",
    "set_job_attributes",
]
