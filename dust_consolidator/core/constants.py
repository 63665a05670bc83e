"""Shared constants for dust-consolidator.

All monetary amounts are integers in the smallest unit of their asset
(wei for native gas, 6-decimal base units for USDC).

Usage:
    from dust_consolidator.core.constants import BPS_DENOMINATOR, ZERO_ADDRESS
"""

# =============================================================================
# Arithmetic
# =============================================================================

BPS_DENOMINATOR = 10_000
WEI_PER_NATIVE = 10**18
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# =============================================================================
# Fees
# =============================================================================

# 1.2% charged at settlement
DEFAULT_SERVICE_FEE_BPS = 120

# Hard ceiling enforced when the fee is configured (not at settlement)
MAX_SERVICE_FEE_BPS = 500

# Each source's own cut, subtracted before ranking
SOURCE_FEE_BPS: dict[str, int] = {
    "0x": 15,
    "1inch": 0,
    "paraswap": 0,
    "lifi": 0,
}

# Tie-break order for equal net output; also the fallback order
SOURCE_PRIORITY: tuple[str, ...] = ("0x", "1inch", "paraswap", "lifi")
DEFAULT_FALLBACK_SOURCE = "0x"


# =============================================================================
# Settlement Defaults
# =============================================================================

DEFAULT_DESTINATION_CHAIN_ID = 8453  # Base
DEFAULT_MIN_CONSOLIDATION_AMOUNT = 1_000_000  # 1 USDC


# =============================================================================
# Sponsorship Defaults
# =============================================================================

DEFAULT_PER_USER_CAP_WEI = 5 * 10**16  # 0.05 native
DEFAULT_PER_JOB_CAP_WEI = 10**16  # 0.01 native
DEFAULT_MIN_JOB_INTERVAL_SECONDS = 300


# =============================================================================
# Fee Estimation (USD, scan-time heuristics)
# =============================================================================

BRIDGE_FEE_RATE = "0.001"  # per chain
BRIDGE_FIXED_FEE_USD = "0.50"  # per chain
SERVICE_FEE_RATE = "0.012"
SWAP_FEE_RATE = "0.003"
MIN_PROFITABLE_USD = "1.0"


# =============================================================================
# Service Defaults
# =============================================================================

DEFAULT_SERVICE_NAME = "dust-consolidator"
DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_LOG_LEVEL = "INFO"
OPERATOR_HEADER = "X-Operator-Address"
