"""Non-custodial multi-chain wallet core."""

__version__ = "0.1.0"
