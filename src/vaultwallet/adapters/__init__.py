"""Uniform network interface over every supported chain family."""

from vaultwallet.adapters.base import (
    ChainAdapter,
    FeeEstimate,
    SignedTransaction,
    TransactionStatus,
    UnsignedTransfer,
)
from vaultwallet.adapters.factory import get_chain_adapter, reset_adapter_cache

__all__ = [
    "ChainAdapter",
    "FeeEstimate",
    "SignedTransaction",
    "TransactionStatus",
    "UnsignedTransfer",
    "get_chain_adapter",
    "reset_adapter_cache",
]
