"""0x swap API quote source.

The 0x quote response already embeds the tradable transaction, so the
execution payload is a passthrough.
"""

from __future__ import annotations

from dust_consolidator.models.quote import AggregatorQuote, ExecutionPayload, QuoteRequest
from dust_consolidator.quotes.base import MalformedQuoteError, QuoteSource


ENDPOINTS: dict[int, str] = {
    1: "https://api.0x.org",
    137: "https://polygon.api.0x.org",
    42161: "https://arbitrum.api.0x.org",
    10: "https://optimism.api.0x.org",
    8453: "https://base.api.0x.org",
    56: "https://bsc.api.0x.org",
    43114: "https://avalanche.api.0x.org",
}


class ZeroXSource(QuoteSource):
    """Quotes from the 0x swap API (``/swap/v1/quote``)."""

    name = "0x"
    supported_chains = frozenset(ENDPOINTS)

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "0x-api-key": self._api_key}

    async def fetch_quote(self, request: QuoteRequest) -> AggregatorQuote | None:
        base_url = ENDPOINTS.get(request.chain_id)
        if base_url is None:
            return None

        data = await self._get_json(
            f"{base_url}/swap/v1/quote",
            {
                "sellToken": request.sell_asset,
                "buyToken": request.buy_asset,
                "sellAmount": str(request.sell_amount),
                "takerAddress": self._taker(request),
            },
        )
        if not data.get("data") or not data.get("to"):
            raise MalformedQuoteError(self.name, "quote is missing calldata")

        buy_amount = self._as_int(data.get("buyAmount"), "buyAmount")
        payload = ExecutionPayload(
            source=self.name,
            to=data["to"],
            data=data["data"],
            value=self._as_int(data.get("value", 0), "value"),
            sell_asset=request.sell_asset,
            buy_asset=request.buy_asset,
            sell_amount=request.sell_amount,
            expected_output=buy_amount,
        )
        return AggregatorQuote.build(
            source=self.name,
            request=request,
            gross_output=buy_amount,
            fee_bps=self.fee_bps,
            gas_estimate=self._as_int(data.get("estimatedGas", 0), "estimatedGas"),
            payload=payload,
        )

    async def fetch_execution_payload(
        self, quote: AggregatorQuote
    ) -> ExecutionPayload | None:
        return quote.payload
