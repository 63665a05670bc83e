"""Core infrastructure for dust-consolidator.

Modules:
- config: Settings loaded from DUST_* environment variables
- constants: Fee, arithmetic and default constants
- chains: Supported chain and token registry
- exceptions: Error hierarchy with stable error codes
- logging: structlog configuration
"""

__all__: list[str] = []
