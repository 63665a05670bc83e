"""Static registry of supported chains and token addresses.

Chains are identified by their EVM chain id; cross-chain messages carry the
CCIP chain selector, which is also recorded here.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_utils import to_checksum_address


@dataclass(frozen=True)
class ChainInfo:
    """Static information about a supported chain.

    Attributes:
        chain_id: EVM chain id.
        name: Human-readable chain name.
        ccip_selector: CCIP chain selector used by the bridge.
        native_symbol: Symbol of the gas token.
        gas_multiplier: Safety multiplier applied to gas estimates.
        is_destination: Whether consolidated funds settle on this chain.
    """

    chain_id: int
    name: str
    ccip_selector: int
    native_symbol: str
    gas_multiplier: float = 1.0
    is_destination: bool = False


CHAINS: tuple[ChainInfo, ...] = (
    ChainInfo(1, "Ethereum", 5009297550715157269, "ETH", 1.2),
    ChainInfo(137, "Polygon", 4051577828743386545, "MATIC", 1.1),
    ChainInfo(42161, "Arbitrum", 4949039107694359620, "ETH", 1.1),
    ChainInfo(10, "Optimism", 3734403246176062136, "ETH", 1.1),
    ChainInfo(56, "BSC", 11344663589394136015, "BNB", 1.0),
    ChainInfo(43114, "Avalanche", 6433500567565415381, "AVAX", 1.1),
    ChainInfo(8453, "Base", 15971525489660198786, "ETH", 1.0, is_destination=True),
)

TOKENS: dict[str, dict[int, str]] = {
    "USDC": {
        1: "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
        137: "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359",
        42161: "0xaf88d065e77c8cc2239327c5edb3a432268e5831",
        10: "0x0b2c639c533813f4aa9d7837caf62653d097ff85",
        56: "0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d",
        43114: "0xb97ef9ef8734c71904d8002f8b6bc66dd9c48a6e",
        8453: "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913",
    },
    "USDT": {
        1: "0xdac17f958d2ee523a2206206994597c13d831ec7",
        137: "0xc2132d05d31c914a87c6611c10748aeb04b58e8f",
        42161: "0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9",
        56: "0x55d398326f99059ff775485246999027b3197955",
        43114: "0x9702230a8ea53601f5cd2dc00fdbc13d4df4a8c7",
    },
    "WETH": {
        1: "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",
        137: "0x7ceb23fd6bc0add59e62ac25578270cff1b9f619",
        42161: "0x82af49447d8a07e3bd95bd0d56f35241523fbab1",
        10: "0x4200000000000000000000000000000000000006",
        8453: "0x4200000000000000000000000000000000000006",
    },
    "DAI": {
        137: "0x8f3cf7ad23cd3cadbd9735aff958023239c6a063",
        42161: "0xda10009cbd5d07dd0cecc66161fc93d7c9000da1",
        10: "0xda10009cbd5d07dd0cecc66161fc93d7c9000da1",
        8453: "0x50c5725949a6f0c72e6c4a641f24049a917db0cb",
    },
}

# Assets a job may consolidate into
TARGET_ASSETS: frozenset[str] = frozenset({"USDC", "WETH"})


def get_chain(chain_id: int) -> ChainInfo | None:
    """Look up a chain by EVM chain id."""
    for chain in CHAINS:
        if chain.chain_id == chain_id:
            return chain
    return None


def get_chain_by_selector(selector: int) -> ChainInfo | None:
    """Look up a chain by CCIP chain selector."""
    for chain in CHAINS:
        if chain.ccip_selector == selector:
            return chain
    return None


def token_address(symbol: str, chain_id: int) -> str | None:
    """Checksummed address of ``symbol`` on ``chain_id``, or None."""
    address = TOKENS.get(symbol.upper(), {}).get(chain_id)
    return to_checksum_address(address) if address is not None else None


def supported_chain_ids() -> list[int]:
    """All registered chain ids, registry order."""
    return [chain.chain_id for chain in CHAINS]
