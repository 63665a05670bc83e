"""1inch swap API quote source.

1inch separates pricing (``/quote``) from the tradable transaction
(``/swap``), so the execution payload needs a second round-trip.
"""

from __future__ import annotations

import httpx

from dust_consolidator.core.logging import get_logger
from dust_consolidator.models.quote import AggregatorQuote, ExecutionPayload, QuoteRequest
from dust_consolidator.quotes.base import QuoteSource, QuoteSourceError


logger = get_logger(__name__)

BASE_URL = "https://api.1inch.dev/swap/v6.0"
DEFAULT_GAS = 200_000
SWAP_SLIPPAGE_PERCENT = 1


class OneInchSource(QuoteSource):
    """Quotes from the 1inch swap API."""

    name = "1inch"
    supported_chains = frozenset({1, 10, 56, 137, 8453, 42161, 43114})

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    async def fetch_quote(self, request: QuoteRequest) -> AggregatorQuote | None:
        if not self.supports(request.chain_id):
            return None

        data = await self._get_json(
            f"{BASE_URL}/{request.chain_id}/quote",
            {
                "src": request.sell_asset,
                "dst": request.buy_asset,
                "amount": str(request.sell_amount),
            },
        )
        return AggregatorQuote.build(
            source=self.name,
            request=request,
            gross_output=self._as_int(data.get("dstAmount"), "dstAmount"),
            fee_bps=self.fee_bps,
            gas_estimate=self._as_int(data.get("gas") or DEFAULT_GAS, "gas"),
        )

    async def fetch_execution_payload(
        self, quote: AggregatorQuote
    ) -> ExecutionPayload | None:
        request = quote.request
        try:
            data = await self._get_json(
                f"{BASE_URL}/{request.chain_id}/swap",
                {
                    "src": request.sell_asset,
                    "dst": request.buy_asset,
                    "amount": str(request.sell_amount),
                    "from": self._taker(request),
                    "slippage": SWAP_SLIPPAGE_PERCENT,
                },
            )
            tx = data["tx"]
            return ExecutionPayload(
                source=self.name,
                to=tx["to"],
                data=tx["data"],
                value=self._as_int(tx.get("value", 0), "value"),
                sell_asset=request.sell_asset,
                buy_asset=request.buy_asset,
                sell_amount=request.sell_amount,
                expected_output=quote.gross_output,
            )
        except (QuoteSourceError, httpx.HTTPError, KeyError, TypeError) as e:
            logger.warning("Execution payload unavailable", source=self.name, error=str(e))
            return None
