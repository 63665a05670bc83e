"""Error handlers for FastAPI exception handling.

Every ConsolidatorError is rendered in a single envelope:
{
    "error": {
        "code": "ERROR_CODE",
        "message": "Human-readable message",
        "type": "retriable|non_retriable",
        "provider": "dust-consolidator",
        "details": {...}
    }
}

Retriable errors also carry a ``Retry-After`` header (seconds).
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from dust_consolidator.core.exceptions import (
    ConsolidatorError,
    ErrorCode,
    GasRecordNotFoundError,
    InvalidJobStateError,
    InvariantViolationError,
    JobCapExceededError,
    JobNotFoundError,
    NonRetriableError,
    RateLimitExceededError,
    RetriableError,
    UnauthorizedError,
    UnsupportedChainError,
    UntrustedSenderError,
    UserCapExceededError,
    ValidationError,
)
from dust_consolidator.core.logging import get_logger

logger = get_logger(__name__)

PROVIDER = "dust-consolidator"


# =============================================================================
# Error Response Models (Pydantic)
# =============================================================================


class ErrorDetail(BaseModel):
    """Error detail schema.

    Attributes:
        code: Machine-readable error code.
        message: Human-readable error message.
        type: Error type (retriable or non_retriable).
        provider: Service that generated the error.
        details: Additional error-specific information.
    """

    code: str
    message: str
    type: str
    provider: str = PROVIDER
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


# =============================================================================
# Status Code Mapping
# =============================================================================


def get_status_code_for_error(error: Exception) -> int:
    """Determine the HTTP status code for an exception."""
    if isinstance(error, (ValidationError, UnsupportedChainError)):
        return 400
    if isinstance(error, (UnauthorizedError, UntrustedSenderError)):
        return 403
    if isinstance(error, (JobNotFoundError, GasRecordNotFoundError)):
        return 404
    if isinstance(
        error,
        (InvalidJobStateError, InvariantViolationError, UserCapExceededError, JobCapExceededError),
    ):
        return 409
    if isinstance(error, RateLimitExceededError):
        return 429

    if isinstance(error, RetriableError):
        return 503
    return 500


# =============================================================================
# Error Details Extraction
# =============================================================================

# Attributes copied from exceptions into ``details``
DETAIL_ATTRS = (
    "job_id",
    "status",
    "expected",
    "field",
    "value",
    "user",
    "cap",
    "requested",
    "available",
    "chain_id",
    "sender",
    "caller",
    "amount_out",
    "min_output_amount",
    "setting",
)


def extract_error_details(error: Exception) -> dict[str, Any]:
    """Extract JSON-safe details from exception attributes.

    Integers are rendered as strings; wei amounts overflow JSON numbers.
    """
    details: dict[str, Any] = {}
    for attr in DETAIL_ATTRS:
        value = getattr(error, attr, None)
        if value is None:
            continue
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        elif not isinstance(value, (str, bool, list)):
            value = str(value)
        details[attr] = value
    return details


# =============================================================================
# Error Response Builder
# =============================================================================


def build_error_response(error: Exception, error_type: str = "non_retriable") -> ErrorResponse:
    code = getattr(error, "error_code", ErrorCode.CONSOLIDATOR_ERROR.value)
    message = getattr(error, "message", str(error))
    details = extract_error_details(error)

    return ErrorResponse(
        error=ErrorDetail(
            code=code,
            message=message,
            type=error_type,
            provider=PROVIDER,
            details=details or None,
        )
    )


# =============================================================================
# Exception Handlers
# =============================================================================


async def retriable_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle RetriableError exceptions with a Retry-After header."""
    if not isinstance(exc, RetriableError):
        return await generic_error_handler(request, exc)

    response = build_error_response(exc, "retriable")
    retry_after_seconds = max(1, -(-exc.retry_after_ms // 1000))

    return JSONResponse(
        status_code=get_status_code_for_error(exc),
        content=response.model_dump(),
        headers={"Retry-After": str(retry_after_seconds)},
    )


async def non_retriable_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle NonRetriableError exceptions."""
    if not isinstance(exc, NonRetriableError):
        return await generic_error_handler(request, exc)

    if isinstance(exc, InvariantViolationError):
        logger.error("Invariant violation", code=exc.error_code, message=exc.message)

    response = build_error_response(exc, "non_retriable")
    return JSONResponse(
        status_code=get_status_code_for_error(exc),
        content=response.model_dump(),
    )


async def consolidator_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle base ConsolidatorError exceptions not caught above."""
    if isinstance(exc, RetriableError):
        return await retriable_error_handler(request, exc)
    if isinstance(exc, NonRetriableError):
        return await non_retriable_error_handler(request, exc)
    if not isinstance(exc, ConsolidatorError):
        return await generic_error_handler(request, exc)

    response = build_error_response(exc, "non_retriable")
    return JSONResponse(status_code=500, content=response.model_dump())


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error("Unhandled error", path=request.url.path, error=str(exc), exc_info=exc)
    response = ErrorResponse(
        error=ErrorDetail(
            code=ErrorCode.CONSOLIDATOR_ERROR.value,
            message=f"Internal server error: {exc!s}",
            type="non_retriable",
            provider=PROVIDER,
            details=None,
        )
    )
    return JSONResponse(status_code=500, content=response.model_dump())


# =============================================================================
# Handler Registration
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    app.add_exception_handler(RetriableError, retriable_error_handler)
    app.add_exception_handler(NonRetriableError, non_retriable_error_handler)
    app.add_exception_handler(ConsolidatorError, consolidator_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)
