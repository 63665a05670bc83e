"""Shared identities and helpers for dust-consolidator tests."""

from __future__ import annotations

from eth_utils import to_checksum_address

from dust_consolidator.core.chains import token_address
from dust_consolidator.models.quote import AggregatorQuote, ExecutionPayload, QuoteRequest


# =============================================================================
# Identities
# =============================================================================

ADMIN = "0x" + "ad" * 20
OPERATOR = "0x" + "0e" * 20
USER = "0x" + "12" * 20
OTHER_USER = "0x" + "34" * 20
FEE_RECIPIENT = "0x" + "fe" * 20
STRANGER = "0x" + "99" * 20
TRUSTED_SENDER = "0x" + "5e" * 20

# =============================================================================
# Chains & Tokens
# =============================================================================

BASE_CHAIN_ID = 8453
ARBITRUM_CHAIN_ID = 42161
ARBITRUM_SELECTOR = 4949039107694359620
USDC_BASE = token_address("USDC", BASE_CHAIN_ID)
WETH_BASE = token_address("WETH", BASE_CHAIN_ID)
DUST_TOKEN = to_checksum_address("0x" + "d5" * 20)

START_TIME = 1_700_000_000.0
MIN_CONSOLIDATION = 50


# =============================================================================
# Builders
# =============================================================================


def swap_payload(
    sell_amount: int,
    expected_output: int,
    sell_asset: str = DUST_TOKEN,
    buy_asset: str = USDC_BASE,
    source: str = "0x",
) -> ExecutionPayload:
    return ExecutionPayload(
        source=source,
        to="0x" + "77" * 20,
        data="0xdeadbeef",
        sell_asset=sell_asset,
        buy_asset=buy_asset,
        sell_amount=sell_amount,
        expected_output=expected_output,
    )


def make_quote(
    source: str,
    gross_output: int,
    fee_bps: int = 0,
    payload: ExecutionPayload | None = None,
    sell_amount: int = 1000,
) -> AggregatorQuote:
    request = QuoteRequest(
        chain_id=BASE_CHAIN_ID,
        sell_asset=DUST_TOKEN,
        buy_asset=USDC_BASE,
        sell_amount=sell_amount,
    )
    return AggregatorQuote.build(
        source=source,
        request=request,
        gross_output=gross_output,
        fee_bps=fee_bps,
        payload=payload,
    )

CONSOLIDATOR = "0x" + "c0" * 20
OPERATOR_HEADERS = {"X-Operator-Address": OPERATOR}
ADMIN_HEADERS = {"X-Operator-Address": ADMIN}
