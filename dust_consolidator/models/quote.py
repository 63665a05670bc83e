"""Normalized quote shapes shared by every quote source.

The ranking algorithm only ever sees these types; source-specific response
fields stay inside ``AggregatorQuote.context``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from dust_consolidator.core.constants import BPS_DENOMINATOR


def net_of_fee(gross_output: int, fee_bps: int) -> int:
    """Subtract a basis-point fee from ``gross_output``.

    Integer arithmetic; the fee is truncated toward zero so the net is never
    rounded down by more than the exact fee.

    Example:
        >>> net_of_fee(1000, 15)
        999
    """
    return gross_output - gross_output * fee_bps // BPS_DENOMINATOR


@dataclass(frozen=True)
class QuoteRequest:
    """A single swap request fanned out to every source.

    Attributes:
        chain_id: Chain the swap executes on.
        sell_asset: Address of the asset sold.
        buy_asset: Address of the asset bought.
        sell_amount: Amount sold, in base units.
        taker: Address the execution payload is pre-authorized for.
    """

    chain_id: int
    sell_asset: str
    buy_asset: str
    sell_amount: int
    taker: str | None = None


@dataclass(frozen=True)
class ExecutionPayload:
    """On-chain call needed to perform the swap.

    Attributes:
        source: Source that produced the calldata.
        to: Call target.
        data: Hex calldata.
        value: Native value attached to the call.
        sell_asset: Asset debited by the call.
        buy_asset: Asset credited by the call.
        sell_amount: Amount debited.
        expected_output: Output the source quoted.
    """

    source: str
    to: str
    data: str
    value: int = 0
    sell_asset: str = ""
    buy_asset: str = ""
    sell_amount: int = 0
    expected_output: int = 0


@dataclass(frozen=True)
class AggregatorQuote:
    """A normalized quote from one price source.

    Attributes:
        source: Source identifier ("0x", "1inch", ...).
        request: The request this quote answers.
        gross_output: Output before the source's fee.
        fee_bps: The source's own fee in basis points.
        net_output: Gross minus the source fee (ranking key).
        gas_estimate: Source's gas estimate for the swap.
        payload: Execution payload when the quote embeds calldata.
        context: Opaque source data needed for a second round-trip.
    """

    source: str
    request: QuoteRequest
    gross_output: int
    fee_bps: int
    net_output: int
    gas_estimate: int = 0
    payload: ExecutionPayload | None = None
    context: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def build(
        cls,
        source: str,
        request: QuoteRequest,
        gross_output: int,
        fee_bps: int,
        gas_estimate: int = 0,
        payload: ExecutionPayload | None = None,
        context: dict[str, Any] | None = None,
    ) -> AggregatorQuote:
        """Construct a quote with ``net_output`` derived from the fee."""
        return cls(
            source=source,
            request=request,
            gross_output=gross_output,
            fee_bps=fee_bps,
            net_output=net_of_fee(gross_output, fee_bps),
            gas_estimate=gas_estimate,
            payload=payload,
            context=context or {},
        )

    def with_payload(self, payload: ExecutionPayload) -> AggregatorQuote:
        """Copy of this quote carrying ``payload``."""
        return replace(self, payload=payload)

    def summary(self) -> dict[str, Any]:
        """Audit view used in logs and API responses."""
        return {
            "source": self.source,
            "gross_output": str(self.gross_output),
            "net_output": str(self.net_output),
            "fee_bps": self.fee_bps,
            "gas_estimate": self.gas_estimate,
        }


@dataclass(frozen=True)
class BestQuote:
    """Result of a successful aggregation.

    Attributes:
        best: Top-ranked candidate.
        candidates: Every successful quote, ranked best-first.
        operator_fee_bps: Operator service fee minus the best source's fee.
    """

    best: AggregatorQuote
    candidates: tuple[AggregatorQuote, ...]
    operator_fee_bps: int
