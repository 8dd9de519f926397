"""Wallet services: account state and the transfer pipeline."""

from vaultwallet.services.transfer import TransferDraft, TransferPipeline, TransferState
from vaultwallet.services.wallet_state import (
    BalanceStatus,
    ChainAccount,
    Transaction,
    TransactionKind,
    WalletState,
)

__all__ = [
    "BalanceStatus",
    "ChainAccount",
    "Transaction",
    "TransactionKind",
    "TransferDraft",
    "TransferPipeline",
    "TransferState",
    "WalletState",
]
