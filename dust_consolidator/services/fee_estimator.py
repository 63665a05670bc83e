"""Pre-flight fee estimate for a consolidation.

Answers "is this worth doing?" before a job is created, from the totals a
balance scan produced. All arithmetic is ``Decimal`` in USD; money fields are
rounded half-up to cents, the profit margin to one decimal place.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from dust_consolidator.core.constants import (
    BRIDGE_FEE_RATE,
    BRIDGE_FIXED_FEE_USD,
    MIN_PROFITABLE_USD,
    SERVICE_FEE_RATE,
    SWAP_FEE_RATE,
)
from dust_consolidator.core.exceptions import ValidationError


CENTS = Decimal("0.01")
TENTHS = Decimal("0.1")
ZERO = Decimal(0)


@dataclass(frozen=True)
class ScanSummary:
    """Totals produced by a wallet balance scan (USD)."""

    total_recoverable: Decimal
    total_gas_estimate: Decimal
    chain_count: int


@dataclass(frozen=True)
class FeeBreakdown:
    gas: Decimal
    bridge: Decimal
    service: Decimal
    swap: Decimal
    total: Decimal


@dataclass(frozen=True)
class FeeEstimate:
    """Estimated fees and proceeds for a consolidation."""

    target_asset: str
    gross_amount: Decimal
    fees: FeeBreakdown
    net_amount: Decimal
    worth_it: bool
    profit_margin: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_asset": self.target_asset,
            "gross_amount": float(self.gross_amount),
            "fees": {
                "gas": float(self.fees.gas),
                "bridge": float(self.fees.bridge),
                "service": float(self.fees.service),
                "swap": float(self.fees.swap),
                "total": float(self.fees.total),
            },
            "net_amount": float(self.net_amount),
            "worth_it": self.worth_it,
            "profit_margin": float(self.profit_margin),
        }


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def estimate_fees(scan: ScanSummary, target_asset: str = "USDC") -> FeeEstimate:
    """Estimate the fees and net proceeds of consolidating ``scan``.

    - bridge: 0.1% of the total per chain, plus $0.50 per chain
    - service: 1.2% of the total
    - swap: 0.3% of the total
    - net: gross minus every fee including gas, floored at zero

    Args:
        scan: Scan totals in USD.
        target_asset: Asset the consolidation would settle into.

    Returns:
        FeeEstimate with rounded money fields.

    Raises:
        ValidationError: On negative totals or chain count.
    """
    gross = Decimal(scan.total_recoverable)
    gas = Decimal(scan.total_gas_estimate)
    if gross < 0 or gas < 0:
        raise ValidationError("totals must be non-negative", field="scan")
    if scan.chain_count < 0:
        raise ValidationError("chain_count must be non-negative", field="chain_count", value=scan.chain_count)

    chains = Decimal(scan.chain_count)
    bridge = gross * Decimal(BRIDGE_FEE_RATE) * chains + chains * Decimal(BRIDGE_FIXED_FEE_USD)
    service = gross * Decimal(SERVICE_FEE_RATE)
    swap = gross * Decimal(SWAP_FEE_RATE)
    total = gas + bridge + service + swap
    net = max(ZERO, gross - total)

    margin = (net / gross * 100).quantize(TENTHS, rounding=ROUND_HALF_UP) if gross > 0 else ZERO

    return FeeEstimate(
        target_asset=target_asset.upper(),
        gross_amount=_cents(gross),
        fees=FeeBreakdown(
            gas=_cents(gas),
            bridge=_cents(bridge),
            service=_cents(service),
            swap=_cents(swap),
            total=_cents(total),
        ),
        net_amount=_cents(net),
        worth_it=net >= Decimal(MIN_PROFITABLE_USD),
        profit_margin=margin,
    )
