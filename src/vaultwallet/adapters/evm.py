"""EVM chain adapter.

Talks plain JSON-RPC over httpx and signs legacy EIP-155 transactions
with eth-account. Serves Ethereum, Polygon and BNB Chain.
"""

import logging
from decimal import Decimal
from typing import Optional

from eth_account import Account
from eth_utils import encode_hex, is_address, to_checksum_address

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

# Standard native transfer
TRANSFER_GAS = 21000


def _parse_quantity(value, error_cls: type[RemoteError], what: str) -> int:
    try:
        return int(value, 16)
    except (TypeError, ValueError):
        raise error_cls(f"Malformed {what}", repr(value)) from None


class EVMAdapter(ChainAdapter):
    """Adapter for EVM-compatible chains."""

    def validate_address(self, address: str) -> bool:
        """Validate 0x-prefixed 20-byte hex; mixed case must carry a valid checksum."""
        if not isinstance(address, str) or not address.startswith("0x") or len(address) != 42:
            return False
        return is_address(address)

    async def get_balance(self, address: str) -> Decimal:
        self.require_address(address)
        result = await self._json_rpc("eth_getBalance", [address, "latest"], BalanceUnavailable)
        wei = _parse_quantity(result, BalanceUnavailable, "balance")
        return self.config.from_base_units(wei)

    async def _get_gas_price(self) -> int:
        result = await self._json_rpc("eth_gasPrice", [], FeeUnavailable)
        return _parse_quantity(result, FeeUnavailable, "gas price")

    async def _estimate_gas(self, from_address: str, to_address: str, amount: Decimal) -> int:
        call = {
            "from": from_address,
            "to": to_address,
            "value": hex(self.config.to_base_units(amount)),
        }
        result = await self._json_rpc("eth_estimateGas", [call], FeeUnavailable)
        return max(_parse_quantity(result, FeeUnavailable, "gas estimate"), TRANSFER_GAS)

    async def estimate_fee(self, from_address: str, to_address: str, amount: Decimal) -> FeeEstimate:
        """Estimate fee as gas price times estimated gas."""
        gas_price = await self._get_gas_price()
        gas_limit = await self._estimate_gas(from_address, to_address, amount)
        fee = self.config.from_base_units(gas_price * gas_limit)

        logger.debug(f"{self.chain.value} fee estimate: {gas_limit} gas @ {gas_price} wei = {fee}")
        return FeeEstimate(
            chain=self.chain,
            symbol=self.config.symbol,
            unit_price=gas_price,
            units=gas_limit,
            fee=fee,
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

        if fee is None:
            gas_price = await self._get_gas_price()
            gas_limit = TRANSFER_GAS
        else:
            gas_price, gas_limit = fee.unit_price, fee.units

        result = await self._json_rpc(
            "eth_getTransactionCount", [from_address, "pending"], RemoteError
        )
        nonce = _parse_quantity(result, RemoteError, "nonce")

        tx = {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": gas_limit,
            "to": to_checksum_address(to_address),
            "value": self.config.to_base_units(amount),
            "data": b"",
            "chainId": self.config.chain_id,
        }
        return UnsignedTransfer(
            chain=self.chain,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            fee=fee,
            payload=tx,
        )

    def sign_transfer(self, unsigned: UnsignedTransfer, key: KeyMaterial) -> SignedTransaction:
        account = Account.from_key(key.private_key_bytes())
        if account.address.lower() != unsigned.from_address.lower():
            raise ValueError("Key material does not match the sending address")

        signed = account.sign_transaction(unsigned.payload)
        return SignedTransaction(
            chain=self.chain,
            raw=bytes(signed.raw_transaction),
            tx_hash=encode_hex(bytes(signed.hash)),
        )

    async def broadcast(self, signed: SignedTransaction) -> str:
        tx_hash = await self._broadcast_json_rpc(
            signed, "eth_sendRawTransaction", [encode_hex(signed.raw)]
        )
        if tx_hash.lower() != signed.tx_hash.lower():
            logger.warning(f"Node returned hash {tx_hash}, expected {signed.tx_hash}")
        logger.info(f"Broadcast {self.chain.value} tx {tx_hash}")
        return tx_hash

    async def get_status(self, tx_hash: str) -> TransactionStatus:
        receipt = await self._json_rpc("eth_getTransactionReceipt", [tx_hash], StatusUnknown)
        if receipt is None:
            return TransactionStatus.PENDING

        if not isinstance(receipt, dict):
            raise StatusUnknown("Malformed receipt", repr(receipt))
        status = _parse_quantity(receipt.get("status"), StatusUnknown, "receipt status")
        return TransactionStatus.CONFIRMED if status == 1 else TransactionStatus.FAILED
