"""Paraswap quote source.

Prices come from ``/prices``; the transaction is built by posting the
returned ``priceRoute`` to ``/transactions/{chain}``.
"""

from __future__ import annotations

import httpx

from dust_consolidator.core.logging import get_logger
from dust_consolidator.models.quote import AggregatorQuote, ExecutionPayload, QuoteRequest
from dust_consolidator.quotes.base import QuoteSource, QuoteSourceError


logger = get_logger(__name__)

BASE_URL = "https://apiv5.paraswap.io"
DEFAULT_GAS = 200_000
PARTNER = "dust"


class ParaswapSource(QuoteSource):
    """Quotes from the Paraswap v5 API."""

    name = "paraswap"
    supported_chains = frozenset({1, 10, 56, 137, 8453, 42161, 43114})

    async def fetch_quote(self, request: QuoteRequest) -> AggregatorQuote | None:
        if not self.supports(request.chain_id):
            return None

        data = await self._get_json(
            f"{BASE_URL}/prices",
            {
                "srcToken": request.sell_asset,
                "destToken": request.buy_asset,
                "amount": str(request.sell_amount),
                "srcDecimals": 18,
                "destDecimals": 18,
                "side": "SELL",
                "network": request.chain_id,
            },
        )
        route = data.get("priceRoute")
        if not isinstance(route, dict):
            return None

        return AggregatorQuote.build(
            source=self.name,
            request=request,
            gross_output=self._as_int(route.get("destAmount"), "destAmount"),
            fee_bps=self.fee_bps,
            gas_estimate=self._as_int(route.get("gasCost") or DEFAULT_GAS, "gasCost"),
            context={"price_route": route},
        )

    async def fetch_execution_payload(
        self, quote: AggregatorQuote
    ) -> ExecutionPayload | None:
        route = quote.context.get("price_route")
        if route is None:
            return None

        request = quote.request
        try:
            data = await self._post_json(
                f"{BASE_URL}/transactions/{request.chain_id}",
                {
                    "srcToken": request.sell_asset,
                    "destToken": request.buy_asset,
                    "srcAmount": str(request.sell_amount),
                    "destAmount": str(quote.gross_output),
                    "priceRoute": route,
                    "userAddress": self._taker(request),
                    "partner": PARTNER,
                },
            )
            return ExecutionPayload(
                source=self.name,
                to=data["to"],
                data=data["data"],
                value=self._as_int(data.get("value", 0), "value"),
                sell_asset=request.sell_asset,
                buy_asset=request.buy_asset,
                sell_amount=request.sell_amount,
                expected_output=quote.gross_output,
            )
        except (QuoteSourceError, httpx.HTTPError, KeyError) as e:
            logger.warning("Execution payload unavailable", source=self.name, error=str(e))
            return None
