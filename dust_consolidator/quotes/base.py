"""Base classes for swap quote sources.

Defines the QuoteSource ABC every price source implements. The aggregator
only talks to this port; concrete sources (0x, 1inch, Paraswap, Li.Fi) are
the adapters.

Patterns applied:
- ABC with @abstractmethod decorator
- Shared httpx.AsyncClient injected by the caller
- Exception classes ending in "Error"
- PEP 604 union syntax (X | None)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from dust_consolidator.core.constants import SOURCE_FEE_BPS, ZERO_ADDRESS
from dust_consolidator.models.quote import AggregatorQuote, ExecutionPayload, QuoteRequest
from dust_consolidator.observability.tracing import inject_trace_context


# =============================================================================
# Exceptions
# =============================================================================


class QuoteSourceError(Exception):
    """Base exception for quote source failures.

    Never escapes the aggregator: any QuoteSourceError means
    "no quote from this source".
    """

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class QuoteSourceHTTPError(QuoteSourceError):
    """Source answered with a non-2xx status."""

    def __init__(self, source: str, status_code: int) -> None:
        super().__init__(source, f"HTTP {status_code}")
        self.status_code = status_code


class MalformedQuoteError(QuoteSourceError):
    """Source answered with a payload that cannot be normalized."""


# =============================================================================
# QuoteSource ABC
# =============================================================================


class QuoteSource(ABC):
    """Abstract base class for swap price sources.

    Subclasses set ``name`` and ``supported_chains`` and implement the two
    capabilities the aggregator needs.

    Example:
        class MySource(QuoteSource):
            name = "mine"
            supported_chains = frozenset({1})

            async def fetch_quote(self, request):
                ...

            async def fetch_execution_payload(self, quote):
                ...
    """

    name: str = ""
    supported_chains: frozenset[int] = frozenset()

    def __init__(self, client: httpx.AsyncClient, api_key: str = "") -> None:
        """Initialize the source.

        Args:
            client: Shared async HTTP client.
            api_key: Optional API key for authenticated endpoints.
        """
        self._client = client
        self._api_key = api_key

    @property
    def fee_bps(self) -> int:
        """The source's own fee in basis points."""
        return SOURCE_FEE_BPS.get(self.name, 0)

    def supports(self, chain_id: int) -> bool:
        """Check whether the source can quote on ``chain_id``."""
        return chain_id in self.supported_chains

    @abstractmethod
    async def fetch_quote(self, request: QuoteRequest) -> AggregatorQuote | None:
        """Fetch a quote for ``request``.

        Returns:
            Normalized quote, or None when the source has no route.

        Raises:
            QuoteSourceError: On transport or payload failure.
            httpx.HTTPError: On network failure.
        """
        ...

    @abstractmethod
    async def fetch_execution_payload(
        self, quote: AggregatorQuote
    ) -> ExecutionPayload | None:
        """Materialize calldata for a quote this source produced.

        Returns:
            Execution payload, or None when it cannot be obtained.
        """
        ...

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        """Request headers; sources with API keys override.

        The active trace context is added on top when a request is sent.
        """
        return {"Accept": "application/json"}

    @staticmethod
    def _taker(request: QuoteRequest) -> str:
        return request.taker or ZERO_ADDRESS

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        """GET ``url`` and return the decoded JSON object.

        Raises:
            QuoteSourceHTTPError: On non-2xx status.
            MalformedQuoteError: If the body is not a JSON object.
        """
        response = await self._client.get(url, params=params, headers=inject_trace_context(self._headers()))
        return self._decode(response)

    async def _post_json(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST ``body`` to ``url`` and return the decoded JSON object."""
        response = await self._client.post(url, json=body, headers=inject_trace_context(self._headers()))
        return self._decode(response)

    def _decode(self, response: httpx.Response) -> dict[str, Any]:
        if not response.is_success:
            raise QuoteSourceHTTPError(self.name, response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedQuoteError(self.name, "response is not JSON") from e
        if not isinstance(data, dict):
            raise MalformedQuoteError(self.name, "response is not an object")
        return data

    def _as_int(self, value: Any, field_name: str) -> int:
        """Parse an integer amount that sources send as decimal strings."""
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise MalformedQuoteError(self.name, f"invalid {field_name}: {value!r}") from e
