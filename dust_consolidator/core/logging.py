"""Structured JSON logging for the consolidation service.

Every line is one JSON object rendered by structlog. Two context values ride
along without being passed explicitly:

- ``correlation_id``: the HTTP request being served (operator call or
  relayed bridge delivery)
- ``job_id``: the consolidation job whose lock is held, so executor and
  ledger lines emitted while a job settles or swaps can be joined to it

Token amounts are logged in base units; values past 2**53 are written as
strings so log pipelines that parse numbers as doubles keep them exact.

``configure_logging`` runs once at startup; tests force reconfiguration.
"""

import contextvars
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog
from structlog.types import EventDict


# =============================================================================
# Singleton Configuration State
# =============================================================================
_configured: bool = False


# =============================================================================
# Correlation ID Context (per HTTP request / inbound message)
# =============================================================================
_correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


def set_correlation_id(correlation_id: str | None) -> None:
    """Set correlation ID for current async context.

    Args:
        correlation_id: Request identifier, or None to clear.
    """
    _correlation_id_var.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get current correlation ID."""
    return _correlation_id_var.get()


# =============================================================================
# Job Context (held for the duration of a job-locked operation)
# =============================================================================
_job_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("job_id", default=None)


@contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``job_id``."""
    token = _job_id_var.set(job_id)
    try:
        yield
    finally:
        _job_id_var.reset(token)


def get_job_id() -> str | None:
    return _job_id_var.get()


# =============================================================================
# Custom Processors
# =============================================================================
def add_correlation_id(
    _logger: object, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Add correlation ID to log event if set.

    Args:
        _logger: Logger instance (unused - required by structlog interface).
        _method_name: Method name (unused).
        event_dict: Event dictionary to process.

    Returns:
        Event dictionary with correlation_id added if set.
    """
    correlation_id = get_correlation_id()
    if correlation_id is not None:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_job_id(
    _logger: object, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Add the job in context unless the event names one itself."""
    job_id = get_job_id()
    if job_id is not None:
        event_dict.setdefault("job_id", job_id)
    return event_dict


def stringify_amounts(
    _logger: object, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Render integers wider than 53 bits as strings.

    Token amounts in base units routinely exceed what JSON consumers can
    represent exactly as numbers.
    """
    for key, value in event_dict.items():
        if isinstance(value, int) and not isinstance(value, bool) and abs(value) > 2**53:
            event_dict[key] = str(value)
    return event_dict


# =============================================================================
# Singleton Configuration
# =============================================================================
def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    force: bool = False,
) -> None:
    """Configure structlog ONCE at application startup.

    Subsequent calls are no-ops unless force=True (for testing).

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        stream: Output stream. Defaults to sys.stdout.
        force: Force reconfiguration (for testing only).
    """
    global _configured

    if _configured and not force:
        return

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        add_correlation_id,
        add_job_id,
        stringify_amounts,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        cache_logger_on_first_use=False,
    )

    _configured = True


def reset_logging() -> None:
    """Reset configuration state for test isolation."""
    global _configured
    _configured = False


def get_logger(name: str) -> Any:
    """Get configured logger by name.

    Auto-configures with defaults if not already configured.

    Args:
        name: Logger name (typically __name__ of the module).

    Returns:
        Configured structlog BoundLogger instance.
    """
    configure_logging()
    return structlog.get_logger().bind(logger=name)
