"""Quote aggregation - fan out → normalize → rank net of source fee.

QuoteAggregator implements best-price discovery across independent sources:
1. Every configured source is queried in parallel, each with its own timeout
2. Failed, slow or empty sources count as "no quote" and never fail the call
3. Quotes are ranked by net output (gross minus the source's own fee)
4. Ties keep source priority order

Flow:
    Request → [All sources](parallel, timeout) → Rank → BestQuote | None
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from dust_consolidator.core.chains import token_address
from dust_consolidator.core.constants import (
    DEFAULT_FALLBACK_SOURCE,
    DEFAULT_SERVICE_FEE_BPS,
    WEI_PER_NATIVE,
)
from dust_consolidator.core.exceptions import ValidationError
from dust_consolidator.core.logging import get_logger
from dust_consolidator.models.quote import (
    AggregatorQuote,
    BestQuote,
    ExecutionPayload,
    QuoteRequest,
)
from dust_consolidator.observability.tracing import get_tracer
from dust_consolidator.quotes.base import QuoteSource


logger = get_logger(__name__)
tracer = get_tracer(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_SOURCE_TIMEOUT_S = 5.0
DEFAULT_OVERALL_TIMEOUT_S = 8.0


# =============================================================================
# Ranking
# =============================================================================


def rank_quotes(quotes: Sequence[AggregatorQuote]) -> list[AggregatorQuote]:
    """Sort quotes by net output, best first.

    ``sorted`` is stable, so quotes with equal net output keep the order they
    were given in (source priority order).

    Args:
        quotes: Successful quotes in source priority order.

    Returns:
        New list ranked by net output descending.
    """
    return sorted(quotes, key=lambda q: q.net_output, reverse=True)


# =============================================================================
# QuoteAggregator Implementation
# =============================================================================


class QuoteAggregator:
    """Best-execution quote aggregator.

    Attributes:
        sources: Quote sources in priority order.
        service_fee_bps: Operator's total service fee rate.
        source_timeout_s: Timeout applied to each source.
        overall_timeout_s: Deadline for the whole fan-out.

    Example:
        async with httpx.AsyncClient() as client:
            aggregator = QuoteAggregator(sources=[ZeroXSource(client), LifiSource(client)])
            result = await aggregator.best_quote(8453, weth, usdc, 10**16)
    """

    def __init__(
        self,
        sources: Sequence[QuoteSource],
        service_fee_bps: int = DEFAULT_SERVICE_FEE_BPS,
        source_timeout_s: float = DEFAULT_SOURCE_TIMEOUT_S,
        overall_timeout_s: float = DEFAULT_OVERALL_TIMEOUT_S,
        fallback_source: str = DEFAULT_FALLBACK_SOURCE,
    ) -> None:
        """Initialize the aggregator.

        Args:
            sources: Quote sources in priority order (tie-break order).
            service_fee_bps: Operator's total service fee rate.
            source_timeout_s: Per-source timeout in seconds.
            overall_timeout_s: Whole fan-out deadline in seconds.
            fallback_source: Source re-quoted when no candidate yields calldata.
        """
        self._sources = list(sources)
        self.service_fee_bps = service_fee_bps
        self._source_timeout_s = source_timeout_s
        self._overall_timeout_s = overall_timeout_s
        self._fallback_source = fallback_source

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def sources(self) -> list[QuoteSource]:
        """Configured sources in priority order."""
        return self._sources

    @property
    def source_names(self) -> list[str]:
        """Names of configured sources in priority order."""
        return [s.name for s in self._sources]

    def source(self, name: str) -> QuoteSource | None:
        """Look up a configured source by name."""
        for source in self._sources:
            if source.name == name:
                return source
        return None

    # -------------------------------------------------------------------------
    # Best Quote
    # -------------------------------------------------------------------------

    async def best_quote(
        self,
        chain_id: int,
        sell_asset: str,
        buy_asset: str,
        sell_amount: int,
        taker: str | None = None,
    ) -> BestQuote | None:
        """Query every source in parallel and return the best net quote.

        Args:
            chain_id: Chain to swap on.
            sell_asset: Address of the asset sold.
            buy_asset: Address of the asset bought.
            sell_amount: Amount sold in base units (> 0).
            taker: Address the payload should be authorized for.

        Returns:
            BestQuote, or None when no source can quote the pair.

        Raises:
            ValidationError: If sell_amount is not positive.
        """
        if sell_amount <= 0:
            raise ValidationError(
                "sell_amount must be positive", field="sell_amount", value=sell_amount
            )

        request = QuoteRequest(
            chain_id=chain_id,
            sell_asset=sell_asset,
            buy_asset=buy_asset,
            sell_amount=sell_amount,
            taker=taker,
        )

        with tracer.start_as_current_span("quotes.best_quote") as span:
            span.set_attribute("chain_id", chain_id)
            span.set_attribute("sources", len(self._sources))

            quotes = await self._collect(request)
            span.set_attribute("quotes", len(quotes))

        if not quotes:
            logger.info(
                "No quotes available from any source",
                chain_id=chain_id,
                sell_asset=sell_asset,
                buy_asset=buy_asset,
            )
            return None

        ranked = rank_quotes(quotes)
        best = ranked[0]
        logger.info(
            "Best quote selected",
            source=best.source,
            gross_output=best.gross_output,
            net_output=best.net_output,
            candidates=[q.summary() for q in ranked],
        )
        return BestQuote(
            best=best,
            candidates=tuple(ranked),
            operator_fee_bps=max(0, self.service_fee_bps - best.fee_bps),
        )

    async def _collect(self, request: QuoteRequest) -> list[AggregatorQuote]:
        """Fan out to every source; results keep source priority order."""
        tasks = [
            asyncio.ensure_future(self._query_source(source, request))
            for source in self._sources
        ]
        if not tasks:
            return []

        _done, pending = await asyncio.wait(tasks, timeout=self._overall_timeout_s)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "Quote fan-out deadline reached",
                pending=len(pending),
                timeout_s=self._overall_timeout_s,
            )

        quotes: list[AggregatorQuote] = []
        for task in tasks:
            if task.cancelled():
                continue
            quote = task.result()
            if quote is not None:
                quotes.append(quote)
        return quotes

    async def _query_source(
        self, source: QuoteSource, request: QuoteRequest
    ) -> AggregatorQuote | None:
        """Query one source; any failure becomes "no quote"."""
        try:
            quote = await asyncio.wait_for(
                source.fetch_quote(request), timeout=self._source_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Quote source timed out",
                source=source.name,
                timeout_s=self._source_timeout_s,
            )
            return None
        except Exception as e:  # noqa: BLE001 - source failures never fail the aggregate
            logger.warning("Quote source failed", source=source.name, error=str(e))
            return None

        if quote is not None and quote.gross_output <= 0:
            logger.warning("Quote source returned empty output", source=source.name)
            return None
        return quote

    # -------------------------------------------------------------------------
    # Execution Payload
    # -------------------------------------------------------------------------

    async def execution_payload(self, quote: AggregatorQuote) -> ExecutionPayload | None:
        """Materialize calldata for the chosen quote.

        Passthrough when the quote embeds calldata; otherwise a second
        round-trip to the source. Fails closed: None on any failure.
        """
        if quote.payload is not None:
            return quote.payload

        source = self.source(quote.source)
        if source is None:
            return None
        try:
            return await asyncio.wait_for(
                source.fetch_execution_payload(quote), timeout=self._source_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning("Execution payload timed out", source=quote.source)
            return None
        except Exception as e:  # noqa: BLE001
            logger.warning("Execution payload failed", source=quote.source, error=str(e))
            return None

    async def resolve_execution(
        self, result: BestQuote
    ) -> tuple[AggregatorQuote, ExecutionPayload] | None:
        """Find an executable route, walking down the ranking.

        Tries each ranked candidate in order, then a fresh quote from the
        fallback source.

        Returns:
            (quote, payload) for the first route with calldata, or None.
        """
        for candidate in result.candidates:
            payload = await self.execution_payload(candidate)
            if payload is not None:
                if candidate is not result.best:
                    logger.info(
                        "Falling back to lower-ranked source",
                        source=candidate.source,
                        best_source=result.best.source,
                    )
                return candidate.with_payload(payload), payload

        fallback = self.source(self._fallback_source)
        if fallback is None:
            return None

        logger.warning("No candidate produced calldata, re-quoting fallback", source=fallback.name)
        quote = await self._query_source(fallback, result.best.request)
        if quote is None:
            return None
        payload = await self.execution_payload(quote)
        if payload is None:
            return None
        return quote.with_payload(payload), payload

    # -------------------------------------------------------------------------
    # Pair Support Check
    # -------------------------------------------------------------------------

    async def is_pair_supported(
        self, chain_id: int, asset: str, quote_asset: str | None = None
    ) -> bool:
        """Check whether any source can price one whole ``asset``.

        Args:
            chain_id: Chain to check.
            asset: Asset address to check.
            quote_asset: Asset to quote into; defaults to the chain's USDC.

        Returns:
            True when at least one source returned a quote.
        """
        quote_asset = quote_asset or token_address("USDC", chain_id)
        if quote_asset is None:
            return False
        result = await self.best_quote(chain_id, asset, quote_asset, WEI_PER_NATIVE)
        return result is not None
