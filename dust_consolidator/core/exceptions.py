"""Custom exceptions for dust-consolidator.

Exception Hierarchy:
    ConsolidatorError (base)
    ├── RetriableError (transient errors)
    │   ├── RateLimitExceededError
    │   ├── PoolExhaustedError
    │   ├── NoRouteAvailableError
    │   ├── SwapExecutionError
    │   └── SlippageExceededError
    └── NonRetriableError (permanent errors)
        ├── ValidationError
        ├── JobNotFoundError
        ├── InvalidJobStateError
        ├── UnauthorizedError
        ├── UserCapExceededError
        ├── JobCapExceededError
        ├── UntrustedSenderError
        ├── UnsupportedChainError
        ├── GasRecordNotFoundError
        ├── ConfigurationError
        └── InvariantViolationError
            └── AlreadyRecoveredError

All custom exceptions end in "Error" and carry a stable ``error_code`` the
operator layer can switch on.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


# =============================================================================
# Error Codes Enum
# =============================================================================


class ErrorCode(str, Enum):
    """Error codes for dust-consolidator exceptions.

    These codes provide a consistent way to identify error types
    across the API and in logging.
    """

    # Base error
    CONSOLIDATOR_ERROR = "CONSOLIDATOR_ERROR"

    # Retriable errors
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"
    NO_ROUTE_AVAILABLE = "NO_ROUTE_AVAILABLE"
    SWAP_EXECUTION_FAILED = "SWAP_EXECUTION_FAILED"
    SLIPPAGE_EXCEEDED = "SLIPPAGE_EXCEEDED"
    PAYOUT_FAILED = "PAYOUT_FAILED"

    # Non-retriable errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_JOB_STATE = "INVALID_JOB_STATE"
    UNAUTHORIZED = "UNAUTHORIZED"
    USER_CAP_EXCEEDED = "USER_CAP_EXCEEDED"
    JOB_CAP_EXCEEDED = "JOB_CAP_EXCEEDED"
    UNTRUSTED_SENDER = "UNTRUSTED_SENDER"
    UNSUPPORTED_CHAIN = "UNSUPPORTED_CHAIN"
    GAS_RECORD_NOT_FOUND = "GAS_RECORD_NOT_FOUND"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    ALREADY_RECOVERED = "ALREADY_RECOVERED"


# =============================================================================
# Base Exception
# =============================================================================


class ConsolidatorError(Exception):
    """Base exception for all dust-consolidator errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code from ErrorCode enum.
    """

    def __init__(
        self,
        message: str,
        error_code: str | ErrorCode = ErrorCode.CONSOLIDATOR_ERROR,
        **kwargs: Any,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            **kwargs: Additional attributes to set on the exception.
        """
        super().__init__(message)
        self.message = message
        self.error_code = (
            error_code.value if isinstance(error_code, ErrorCode) else error_code
        )

        for key, value in kwargs.items():
            setattr(self, key, value)


# =============================================================================
# Retriable Error Base
# =============================================================================


class RetriableError(ConsolidatorError):
    """Base class for transient errors that may succeed on retry.

    Attributes:
        retry_after_ms: Suggested retry delay in milliseconds.
    """

    def __init__(
        self,
        message: str,
        retry_after_ms: int = 1000,
        error_code: str | ErrorCode = ErrorCode.CONSOLIDATOR_ERROR,
        **kwargs: Any,
    ) -> None:
        """Initialize the retriable error.

        Args:
            message: Human-readable error message.
            retry_after_ms: Suggested retry delay in milliseconds (default: 1000).
            error_code: Machine-readable error code.
            **kwargs: Additional attributes.
        """
        super().__init__(message, error_code, **kwargs)
        self.retry_after_ms = retry_after_ms


# =============================================================================
# Non-Retriable Error Base
# =============================================================================


class NonRetriableError(ConsolidatorError):
    """Base class for permanent errors that should not be retried."""

    pass


# =============================================================================
# Retriable Exceptions
# =============================================================================


class RateLimitExceededError(RetriableError):
    """User requested sponsorship before the minimum interval elapsed.

    Attributes:
        user: Address of the rate-limited user.
    """

    def __init__(
        self,
        message: str,
        user: str | None = None,
        retry_after_ms: int = 1000,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            retry_after_ms=retry_after_ms,
            error_code=ErrorCode.RATE_LIMIT_EXCEEDED,
            **kwargs,
        )
        self.user = user


class PoolExhaustedError(RetriableError):
    """Sponsorship pool cannot cover the requested gas value.

    Attributes:
        requested: Requested value in wei.
        available: Pool balance in wei.
    """

    def __init__(
        self,
        message: str,
        requested: int | None = None,
        available: int | None = None,
        retry_after_ms: int = 60_000,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            retry_after_ms=retry_after_ms,
            error_code=ErrorCode.POOL_EXHAUSTED,
            **kwargs,
        )
        self.requested = requested
        self.available = available


class NoRouteAvailableError(RetriableError):
    """No quote source can currently swap the requested pair."""

    def __init__(
        self,
        message: str,
        chain_id: int | None = None,
        retry_after_ms: int = 30_000,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            retry_after_ms=retry_after_ms,
            error_code=ErrorCode.NO_ROUTE_AVAILABLE,
            **kwargs,
        )
        self.chain_id = chain_id


class SwapExecutionError(RetriableError):
    """The swap call failed; job and custody were rolled back."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        retry_after_ms: int = 5000,
        error_code: str | ErrorCode = ErrorCode.SWAP_EXECUTION_FAILED,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            retry_after_ms=retry_after_ms,
            error_code=error_code,
            **kwargs,
        )
        self.job_id = job_id


class SlippageExceededError(SwapExecutionError):
    """Swap output fell below the caller-supplied minimum.

    Attributes:
        amount_out: Output actually measured.
        min_output_amount: Floor supplied by the caller.
    """

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        amount_out: int | None = None,
        min_output_amount: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            job_id=job_id,
            error_code=ErrorCode.SLIPPAGE_EXCEEDED,
            **kwargs,
        )
        self.amount_out = amount_out
        self.min_output_amount = min_output_amount


class PayoutFailedError(RetriableError):
    """Custody could not pay out; nothing was transferred and the job is unchanged."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        retry_after_ms: int = 5000,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            retry_after_ms=retry_after_ms,
            error_code=ErrorCode.PAYOUT_FAILED,
            **kwargs,
        )
        self.job_id = job_id


# =============================================================================
# Non-Retriable Exceptions
# =============================================================================


class ValidationError(NonRetriableError):
    """Request validation failed beyond Pydantic's built-in validation.

    Attributes:
        field: Name of the invalid field.
        value: The invalid value.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION_ERROR,
            **kwargs,
        )
        self.field = field
        self.value = value


class JobNotFoundError(NonRetriableError):
    """No job exists with the given identifier."""

    def __init__(self, job_id: str, **kwargs: Any) -> None:
        super().__init__(
            f"Job '{job_id}' not found",
            error_code=ErrorCode.JOB_NOT_FOUND,
            **kwargs,
        )
        self.job_id = job_id


class InvalidJobStateError(NonRetriableError):
    """Operation attempted from a state that does not allow it.

    Attributes:
        job_id: The job being mutated.
        status: Current status of the job.
        expected: Statuses the operation accepts.
    """

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        status: str | None = None,
        expected: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            error_code=ErrorCode.INVALID_JOB_STATE,
            **kwargs,
        )
        self.job_id = job_id
        self.status = status
        self.expected = expected


class UnauthorizedError(NonRetriableError):
    """Caller is not an operator or administrator."""

    def __init__(self, message: str, caller: str | None = None, **kwargs: Any) -> None:
        super().__init__(
            message,
            error_code=ErrorCode.UNAUTHORIZED,
            **kwargs,
        )
        self.caller = caller


class UserCapExceededError(NonRetriableError):
    """Sponsorship would push the user over their lifetime cap."""

    def __init__(
        self,
        message: str,
        user: str | None = None,
        cap: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            error_code=ErrorCode.USER_CAP_EXCEEDED,
            **kwargs,
        )
        self.user = user
        self.cap = cap


class JobCapExceededError(NonRetriableError):
    """Sponsorship for a single job exceeds the per-job cap."""

    def __init__(
        self,
        message: str,
        requested: int | None = None,
        cap: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            error_code=ErrorCode.JOB_CAP_EXCEEDED,
            **kwargs,
        )
        self.requested = requested
        self.cap = cap


class UntrustedSenderError(NonRetriableError):
    """Inbound message sender is not the trusted sender for its chain."""

    def __init__(
        self,
        message: str,
        chain_id: int | None = None,
        sender: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            error_code=ErrorCode.UNTRUSTED_SENDER,
            **kwargs,
        )
        self.chain_id = chain_id
        self.sender = sender


class UnsupportedChainError(NonRetriableError):
    """Chain is not on the supported list."""

    def __init__(self, message: str, chain_id: int | None = None, **kwargs: Any) -> None:
        super().__init__(
            message,
            error_code=ErrorCode.UNSUPPORTED_CHAIN,
            **kwargs,
        )
        self.chain_id = chain_id


class GasRecordNotFoundError(NonRetriableError):
    """No gas sponsorship record exists for the job."""

    def __init__(self, job_id: str, **kwargs: Any) -> None:
        super().__init__(
            f"No gas record for job '{job_id}'",
            error_code=ErrorCode.GAS_RECORD_NOT_FOUND,
            **kwargs,
        )
        self.job_id = job_id


class ConfigurationError(NonRetriableError):
    """Service configuration is invalid.

    Attributes:
        setting: Name of the problematic setting.
    """

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            **kwargs,
        )
        self.setting = setting


class InvariantViolationError(NonRetriableError):
    """A should-never-happen condition was hit; surfaced loudly."""

    def __init__(
        self,
        message: str,
        error_code: str | ErrorCode = ErrorCode.INVARIANT_VIOLATION,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)


class AlreadyRecoveredError(InvariantViolationError):
    """Gas record for the job was already marked recovered."""

    def __init__(self, job_id: str, **kwargs: Any) -> None:
        super().__init__(
            f"Gas for job '{job_id}' already recovered",
            error_code=ErrorCode.ALREADY_RECOVERED,
            **kwargs,
        )
        self.job_id = job_id
