"""Base interfaces for the chain abstraction layer.

Transfer flow:
1. Recipient address is validated locally
2. Fee is estimated from the network
3. Transfer is built from remote state (nonce, UTXOs, blockhash)
4. Transfer is signed locally with derived key material
5. Signed transaction is broadcast
6. Status is polled until confirmed or failed

Building and signing are separate calls so that key material is only
alive during the synchronous signing step, never across an await.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Optional

import httpx

from vaultwallet.chains import Chain, ChainConfig
from vaultwallet.config import get_settings
from vaultwallet.errors import BroadcastError, BroadcastUncertain, InvalidAddress, RemoteError
from vaultwallet.hdwallet.base import KeyMaterial

logger = logging.getLogger(__name__)


class TransactionStatus(str, Enum):
    """On-chain status of a submitted transaction."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class FeeEstimate:
    """Estimated network fee for a transfer."""

    chain: Chain
    symbol: str
    unit_price: int        # wei per gas, sat per vbyte, lamports per signature
    units: int             # gas, vbytes, signatures
    fee: Decimal           # unit_price * units in native units
    fee_usd: Optional[Decimal] = None
    fee_usd_is_live: bool = False  # True only when priced from a live quote


@dataclass
class UnsignedTransfer:
    """A native-asset transfer ready to be signed."""

    chain: Chain
    from_address: str
    to_address: str
    amount: Decimal
    fee: Optional[FeeEstimate]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class SignedTransaction:
    """Serialized signed transaction and its locally computed hash."""

    chain: Chain
    raw: bytes = field(repr=False)
    tx_hash: str


class ChainAdapter(ABC):
    """Abstract base class for a chain family's network operations.

    An httpx.AsyncClient may be injected; otherwise a short-lived client
    is opened per call.
    """

    def __init__(
        self,
        config: ChainConfig,
        endpoint: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.config = config
        self.endpoint = endpoint.rstrip("/")
        self._client = client
        self.timeout = timeout if timeout is not None else get_settings().http_timeout

    @property
    def chain(self) -> Chain:
        return self.config.chain

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    def require_address(self, address: str) -> str:
        """Return address unchanged, or raise InvalidAddress."""
        if not self.validate_address(address):
            raise InvalidAddress(address, self.chain.value)
        return address

    async def _json_rpc(
        self,
        method: str,
        params: list,
        error_cls: type[RemoteError] = RemoteError,
    ) -> Any:
        """Call a JSON-RPC method on the endpoint and return its result."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            async with self._session() as client:
                response = await client.post(self.endpoint, json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"{self.chain.value} {method} failed: {e}")
            raise error_cls(f"{method} failed", str(e)) from e

        if not isinstance(data, dict):
            raise error_cls(f"{method} returned malformed response")
        if data.get("error"):
            error = data["error"]
            detail = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise error_cls(f"{method} returned error", detail)
        if "result" not in data:
            raise error_cls(f"{method} returned no result")
        return data["result"]

    async def _send_for_broadcast(
        self,
        signed: SignedTransaction,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a broadcast request, classifying transport failures.

        A request that never connected is a plain BroadcastError. Any other
        transport failure leaves the outcome unknown.
        """
        try:
            async with self._session() as client:
                return await client.request(method, url, **kwargs)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise BroadcastError("Could not reach network", str(e)) from e
        except httpx.TransportError as e:
            logger.warning(f"{self.chain.value} broadcast outcome unknown for {signed.tx_hash}: {e}")
            raise BroadcastUncertain("Broadcast outcome unknown", signed.tx_hash, str(e)) from e

    async def _broadcast_json_rpc(self, signed: SignedTransaction, method: str, params: list) -> str:
        """Submit via a JSON-RPC method; an RPC error is a rejection."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        response = await self._send_for_broadcast(signed, "POST", self.endpoint, json=payload)

        try:
            data = response.json()
        except ValueError:
            raise BroadcastError(f"Broadcast failed with HTTP {response.status_code}", response.text) from None

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            detail = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.error(f"{self.chain.value} broadcast rejected: {detail}")
            raise BroadcastError("Transaction rejected", detail)
        if response.status_code >= 400 or not isinstance(data, dict) or not data.get("result"):
            raise BroadcastError(f"Broadcast failed with HTTP {response.status_code}", response.text)

        return data["result"]

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        """Check address format for this chain. Local, never raises."""
        pass

    @abstractmethod
    async def get_balance(self, address: str) -> Decimal:
        """Get the native balance of an address.

        Raises:
            InvalidAddress: If address is malformed
            BalanceUnavailable: If the balance could not be fetched
        """
        pass

    @abstractmethod
    async def estimate_fee(self, from_address: str, to_address: str, amount: Decimal) -> FeeEstimate:
        """Estimate the network fee for a transfer.

        Raises:
            FeeUnavailable: If the fee rate or cost could not be fetched
        """
        pass

    @abstractmethod
    async def build_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        fee: Optional[FeeEstimate] = None,
    ) -> UnsignedTransfer:
        """Fetch the remote state needed to sign a transfer."""
        pass

    @abstractmethod
    def sign_transfer(self, unsigned: UnsignedTransfer, key: KeyMaterial) -> SignedTransaction:
        """Sign a built transfer. Local and synchronous."""
        pass

    @abstractmethod
    async def broadcast(self, signed: SignedTransaction) -> str:
        """Submit a signed transaction and return its hash.

        Raises:
            BroadcastError: If the network rejected the transaction
            BroadcastUncertain: If the outcome is unknown
        """
        pass

    @abstractmethod
    async def get_status(self, tx_hash: str) -> TransactionStatus:
        """Check transaction status.

        Raises:
            StatusUnknown: If the status could not be fetched
        """
        pass
