"""Swap quote sources and the best-execution aggregator.

Sources:
- base: QuoteSource ABC
- zero_x: 0x swap API (calldata embedded)
- oneinch: 1inch (calldata via /swap)
- paraswap: Paraswap (calldata via /transactions)
- lifi: Li.Fi (transactionRequest embedded)
"""

import httpx

from dust_consolidator.quotes.aggregator import QuoteAggregator, rank_quotes
from dust_consolidator.quotes.base import (
    MalformedQuoteError,
    QuoteSource,
    QuoteSourceError,
    QuoteSourceHTTPError,
)
from dust_consolidator.quotes.lifi import LifiSource
from dust_consolidator.quotes.oneinch import OneInchSource
from dust_consolidator.quotes.paraswap import ParaswapSource
from dust_consolidator.quotes.zero_x import ZeroXSource


def build_default_sources(
    client: httpx.AsyncClient,
    zero_x_api_key: str = "",
    oneinch_api_key: str = "",
) -> list[QuoteSource]:
    """Instantiate every source in priority order."""
    return [
        ZeroXSource(client, api_key=zero_x_api_key),
        OneInchSource(client, api_key=oneinch_api_key),
        ParaswapSource(client),
        LifiSource(client),
    ]


__all__: list[str] = [
    "LifiSource",
    "MalformedQuoteError",
    "OneInchSource",
    "ParaswapSource",
    "QuoteAggregator",
    "QuoteSource",
    "QuoteSourceError",
    "QuoteSourceHTTPError",
    "ZeroXSource",
    "build_default_sources",
    "rank_quotes",
]
