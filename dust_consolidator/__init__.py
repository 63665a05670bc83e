"""dust-consolidator: Cross-chain dust consolidation service.

This package sweeps small token balances scattered across several chains
into a single settlement asset on a destination chain, fronting gas on the
user's behalf and recovering it from the final proceeds.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
