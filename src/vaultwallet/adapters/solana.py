"""Solana adapter.

JSON-RPC over httpx; system-program transfers are built and signed
with solders.
"""

import base64
import logging
from decimal import Decimal
from typing import Optional

import base58
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from vaultwallet.adapters.base import (
    ChainAdapter,
    FeeEstimate,
    SignedTransaction,
    TransactionStatus,
    UnsignedTransfer,
)
from vaultwallet.errors import (
    BalanceUnavailable,
    FeeUnavailable,
    RemoteError,
    StatusUnknown,
)
from vaultwallet.hdwallet.base import KeyMaterial

logger = logging.getLogger(__name__)

COMMITMENT = "confirmed"
PUBKEY_BYTES = 32


class SolanaAdapter(ChainAdapter):
    """Adapter for Solana mainnet."""

    def validate_address(self, address: str) -> bool:
        """A Solana address is a base58-encoded 32-byte public key."""
        if not isinstance(address, str) or not 32 <= len(address) <= 44:
            return False
        try:
            return len(base58.b58decode(address)) == PUBKEY_BYTES
        except ValueError:
            return False

    async def get_balance(self, address: str) -> Decimal:
        self.require_address(address)
        result = await self._json_rpc(
            "getBalance", [address, {"commitment": COMMITMENT}], BalanceUnavailable
        )
        try:
            lamports = int(result["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise BalanceUnavailable("Malformed balance", str(e)) from e
        return self.config.from_base_units(lamports)

    async def _get_latest_blockhash(self, error_cls: type[RemoteError]) -> str:
        result = await self._json_rpc(
            "getLatestBlockhash", [{"commitment": COMMITMENT}], error_cls
        )
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError) as e:
            raise error_cls("Malformed blockhash response", str(e)) from e

    def _transfer_instruction(self, from_address: str, to_address: str, lamports: int):
        return transfer(
            TransferParams(
                from_pubkey=Pubkey.from_string(from_address),
                to_pubkey=Pubkey.from_string(to_address),
                lamports=lamports,
            )
        )

    async def estimate_fee(self, from_address: str, to_address: str, amount: Decimal) -> FeeEstimate:
        """Ask the cluster what a transfer message would cost."""
        self.require_address(from_address)
        self.require_address(to_address)

        blockhash = await self._get_latest_blockhash(FeeUnavailable)
        instruction = self._transfer_instruction(
            from_address, to_address, self.config.to_base_units(amount)
        )
        message = Message.new_with_blockhash(
            [instruction], Pubkey.from_string(from_address), Hash.from_string(blockhash)
        )
        encoded = base64.b64encode(bytes(message)).decode()

        result = await self._json_rpc(
            "getFeeForMessage", [encoded, {"commitment": COMMITMENT}], FeeUnavailable
        )
        lamports = result.get("value") if isinstance(result, dict) else None
        if lamports is None:
            raise FeeUnavailable("Cluster could not price the message")

        signatures = message.header.num_required_signatures
        return FeeEstimate(
            chain=self.chain,
            symbol=self.config.symbol,
            unit_price=int(lamports) // max(signatures, 1),
            units=signatures,
            fee=self.config.from_base_units(int(lamports)),
        )

    async def build_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        fee: Optional[FeeEstimate] = None,
    ) -> UnsignedTransfer:
        self.require_address(from_address)
        self.require_address(to_address)

        blockhash = await self._get_latest_blockhash(RemoteError)
        return UnsignedTransfer(
            chain=self.chain,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            fee=fee,
            payload={
                "blockhash": blockhash,
                "lamports": self.config.to_base_units(amount),
            },
        )

    def sign_transfer(self, unsigned: UnsignedTransfer, key: KeyMaterial) -> SignedTransaction:
        keypair = Keypair.from_seed(key.private_key_bytes())
        if str(keypair.pubkey()) != unsigned.from_address:
            raise ValueError("Key material does not match the sending address")

        instruction = self._transfer_instruction(
            unsigned.from_address, unsigned.to_address, unsigned.payload["lamports"]
        )
        message = Message([instruction], keypair.pubkey())
        tx = Transaction([keypair], message, Hash.from_string(unsigned.payload["blockhash"]))

        return SignedTransaction(
            chain=self.chain,
            raw=bytes(tx),
            tx_hash=str(tx.signatures[0]),
        )

    async def broadcast(self, signed: SignedTransaction) -> str:
        signature = await self._broadcast_json_rpc(
            signed,
            "sendTransaction",
            [
                base64.b64encode(signed.raw).decode(),
                {"encoding": "base64", "preflightCommitment": COMMITMENT},
            ],
        )
        logger.info(f"Broadcast solana tx {signature}")
        return signature

    async def get_status(self, tx_hash: str) -> TransactionStatus:
        """Pending until finalized; an execution error is a failure."""
        result = await self._json_rpc(
            "getSignatureStatuses",
            [[tx_hash], {"searchTransactionHistory": True}],
            StatusUnknown,
        )
        try:
            status = result["value"][0]
        except (KeyError, TypeError, IndexError) as e:
            raise StatusUnknown("Malformed status response", str(e)) from e

        if status is None:
            return TransactionStatus.PENDING
        if status.get("err") is not None:
            return TransactionStatus.FAILED
        if status.get("confirmationStatus") == "finalized":
            return TransactionStatus.CONFIRMED
        return TransactionStatus.PENDING
