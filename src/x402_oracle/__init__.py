"""Wallet reputation oracle gated behind on-chain USDC payments (x402)."""

__version__ = "1.0.0"
