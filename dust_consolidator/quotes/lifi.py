"""Li.Fi quote source.

Same-chain swaps through ``/v1/quote``; the response carries a ready
``transactionRequest``.
"""

from __future__ import annotations

from dust_consolidator.models.quote import AggregatorQuote, ExecutionPayload, QuoteRequest
from dust_consolidator.quotes.base import QuoteSource


BASE_URL = "https://li.quest/v1"
DEFAULT_GAS = 200_000


class LifiSource(QuoteSource):
    """Quotes from the Li.Fi aggregation API."""

    name = "lifi"
    supported_chains = frozenset({1, 10, 56, 137, 8453, 42161, 43114})

    async def fetch_quote(self, request: QuoteRequest) -> AggregatorQuote | None:
        if not self.supports(request.chain_id):
            return None

        data = await self._get_json(
            f"{BASE_URL}/quote",
            {
                "fromChain": request.chain_id,
                "toChain": request.chain_id,
                "fromToken": request.sell_asset,
                "toToken": request.buy_asset,
                "fromAmount": str(request.sell_amount),
                "fromAddress": self._taker(request),
            },
        )
        estimate = data.get("estimate")
        if not isinstance(estimate, dict):
            return None

        gas_costs = estimate.get("gasCosts") or []
        gas = gas_costs[0].get("estimate") if gas_costs else None
        to_amount = self._as_int(estimate.get("toAmount"), "toAmount")

        payload = None
        tx = data.get("transactionRequest")
        if isinstance(tx, dict) and tx.get("data") and tx.get("to"):
            payload = ExecutionPayload(
                source=self.name,
                to=tx["to"],
                data=tx["data"],
                value=int(str(tx.get("value", "0")), 0),
                sell_asset=request.sell_asset,
                buy_asset=request.buy_asset,
                sell_amount=request.sell_amount,
                expected_output=to_amount,
            )

        return AggregatorQuote.build(
            source=self.name,
            request=request,
            gross_output=to_amount,
            fee_bps=self.fee_bps,
            gas_estimate=self._as_int(gas or DEFAULT_GAS, "gas"),
            payload=payload,
        )

    async def fetch_execution_payload(
        self, quote: AggregatorQuote
    ) -> ExecutionPayload | None:
        return quote.payload
