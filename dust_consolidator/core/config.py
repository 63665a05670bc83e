"""Core configuration module for dust-consolidator.

Loads settings from DUST_* prefixed environment variables using Pydantic Settings.

Patterns applied:
- pydantic-settings BaseSettings (Pydantic v2 split)
- env_prefix = "DUST_" for namespace isolation
- @field_validator + @classmethod (Pydantic v2 pattern)
- @lru_cache for singleton pattern
- PEP 604 union syntax (X | None)
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from dust_consolidator.core.constants import (
    DEFAULT_DESTINATION_CHAIN_ID,
    DEFAULT_HOST,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MIN_CONSOLIDATION_AMOUNT,
    DEFAULT_MIN_JOB_INTERVAL_SECONDS,
    DEFAULT_PER_JOB_CAP_WEI,
    DEFAULT_PER_USER_CAP_WEI,
    DEFAULT_PORT,
    DEFAULT_SERVICE_FEE_BPS,
    DEFAULT_SERVICE_NAME,
    MAX_SERVICE_FEE_BPS,
)


class Settings(BaseSettings):
    """Application settings loaded from DUST_* environment variables.

    All environment variables must be prefixed with DUST_.
    Example: DUST_PORT=3000, DUST_SERVICE_FEE_BPS=120

    Attributes:
        service_name: Service identifier for logging and discovery.
        port: HTTP port (1-65535). Default: 3000.
        host: Bind address. Default: 0.0.0.0.
        environment: Deployment environment. Default: development.
        log_level: Logging verbosity. Default: INFO.
        operator_addresses: Identities allowed to mutate jobs.
        admin_address: Administrative override identity.
        fee_recipient: Address that receives the service fee.
        service_fee_bps: Fee charged at settlement in basis points.
        minimum_consolidation_amount: Settlement floor in settlement units.
    """

    # =========================================================================
    # Core Settings
    # =========================================================================
    service_name: str = Field(
        default=DEFAULT_SERVICE_NAME,
        description="Service name for identification",
    )
    port: int = Field(
        default=DEFAULT_PORT,
        ge=1,
        le=65535,
        description="HTTP server port",
    )
    host: str = Field(
        default=DEFAULT_HOST,
        description="HTTP server bind address",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: str = Field(
        default=DEFAULT_LOG_LEVEL,
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Authorization
    # =========================================================================
    operator_addresses: list[str] = Field(
        default_factory=lambda: ["0x000000000000000000000000000000000000dead"],
        description="Operator identities allowed to drive jobs",
    )
    admin_address: str = Field(
        default="0x000000000000000000000000000000000000dead",
        description="Administrative identity (fees, caps, trusted senders)",
    )
    fee_recipient: str = Field(
        default="0x000000000000000000000000000000000000dead",
        description="Recipient of the service fee at settlement",
    )
    consolidator_address: str = Field(
        default="0x000000000000000000000000000000000000dead",
        description="Consolidator contract address on the destination chain",
    )

    # =========================================================================
    # Settlement
    # =========================================================================
    destination_chain_id: int = Field(
        default=DEFAULT_DESTINATION_CHAIN_ID,
        description="Chain that receives consolidated funds",
    )
    service_fee_bps: int = Field(
        default=DEFAULT_SERVICE_FEE_BPS,
        ge=0,
        le=MAX_SERVICE_FEE_BPS,
        description="Service fee in basis points (capped at MAX_SERVICE_FEE_BPS)",
    )
    minimum_consolidation_amount: int = Field(
        default=DEFAULT_MIN_CONSOLIDATION_AMOUNT,
        ge=0,
        description="Minimum settlement total in settlement-asset base units",
    )

    # =========================================================================
    # Quote Sources
    # =========================================================================
    quote_source_timeout_s: float = Field(
        default=5.0,
        gt=0,
        description="Timeout applied to each individual quote source",
    )
    quote_overall_timeout_s: float = Field(
        default=8.0,
        gt=0,
        description="Deadline for the whole quote fan-out",
    )
    zero_x_api_key: str = Field(default="", description="0x API key")
    oneinch_api_key: str = Field(default="", description="1inch API key")
    default_slippage_bps: int = Field(
        default=100,
        ge=0,
        le=10_000,
        description="Slippage tolerance used when deriving minimum output",
    )

    # =========================================================================
    # Gas Sponsorship
    # =========================================================================
    sponsorship_per_user_cap_wei: int = Field(
        default=DEFAULT_PER_USER_CAP_WEI,
        ge=0,
        description="Lifetime sponsorship cap per user (wei)",
    )
    sponsorship_per_job_cap_wei: int = Field(
        default=DEFAULT_PER_JOB_CAP_WEI,
        ge=0,
        description="Sponsorship cap per job (wei)",
    )
    sponsorship_min_interval_s: int = Field(
        default=DEFAULT_MIN_JOB_INTERVAL_SECONDS,
        ge=0,
        description="Minimum seconds between a user's sponsored jobs",
    )
    sponsorship_initial_pool_wei: int = Field(
        default=0,
        ge=0,
        description="Pool balance credited at startup (wei)",
    )

    # =========================================================================
    # Cross-Chain Gateway
    # =========================================================================
    trusted_senders: dict[int, str] = Field(
        default_factory=dict,
        description="Source chain selector -> trusted sender address (JSON)",
    )

    # =========================================================================
    # Events & Observability
    # =========================================================================
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis URL for job lifecycle events",
    )
    events_enabled: bool = Field(
        default=False,
        description="Publish job lifecycle events to Redis",
    )
    tracing_enabled: bool = Field(
        default=False,
        description="Enable OpenTelemetry tracing",
    )
    otlp_endpoint: str | None = Field(
        default=None,
        description="OTLP gRPC endpoint (console exporter when unset)",
    )

    # =========================================================================
    # Pydantic v2 Model Configuration
    # =========================================================================
    model_config = {
        "env_prefix": "DUST_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # =========================================================================
    # Validators (Pydantic v2 pattern: @field_validator + @classmethod)
    # =========================================================================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level to uppercase.

        Args:
            v: Input log level string.

        Returns:
            Normalized uppercase log level.

        Raises:
            ValueError: If log level is not valid.
        """
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        normalized = v.upper()
        if normalized not in valid_levels:
            msg = f"log_level must be one of {valid_levels}, got '{v}'"
            raise ValueError(msg)
        return normalized

    @field_validator("operator_addresses")
    @classmethod
    def validate_operator_addresses(cls, v: list[str]) -> list[str]:
        """Require at least one operator identity.

        Raises:
            ValueError: If the operator set is empty.
        """
        cleaned = [address.strip() for address in v if address.strip()]
        if not cleaned:
            msg = "operator_addresses must contain at least one address"
            raise ValueError(msg)
        return cleaned

    @model_validator(mode="after")
    def validate_quote_timeouts(self) -> "Settings":
        """The overall quote deadline cannot be shorter than a single source."""
        if self.quote_overall_timeout_s < self.quote_source_timeout_s:
            msg = "quote_overall_timeout_s must be >= quote_source_timeout_s"
            raise ValueError(msg)
        return self


@lru_cache
def get_settings() -> Settings:
    """Get singleton Settings instance.

    Uses @lru_cache to ensure only one instance is created.

    Returns:
        Cached Settings instance.
    """
    return Settings()
