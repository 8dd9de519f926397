"""Bitcoin adapter.

Uses the Esplora REST API (Blockstream) for balances, UTXOs and broadcast,
mempool.space for fee rates, and signs native SegWit (P2WPKH) spends
locally following BIP143.
"""

import hashlib
import logging
import struct
from decimal import Decimal
from typing import Optional

import base58
import httpx
from bip_utils import Bech32ChecksumError, P2WPKHAddrEncoder, SegwitBech32Decoder
from ecdsa import SECP256k1, SigningKey
from ecdsa.util import sigencode_der_canonize

from vaultwallet.adapters.base import (
    ChainAdapter,
    FeeEstimate,
    SignedTransaction,
    TransactionStatus,
    UnsignedTransfer,
)
from vaultwallet.chains import ChainConfig
from vaultwallet.config import get_settings
from vaultwallet.errors import (
    BalanceUnavailable,
    BroadcastError,
    FeeUnavailable,
    InsufficientBalance,
    RemoteError,
    StatusUnknown,
)
from vaultwallet.hdwallet.base import KeyMaterial
from vaultwallet.hdwallet.btc import BECH32_HRP

logger = logging.getLogger(__name__)

TX_VERSION = 2
SEQUENCE_RBF = 0xFFFFFFFD
SIGHASH_ALL = 1
DUST_LIMIT = 546  # satoshis

P2PKH_VERSION = 0x00
P2SH_VERSION = 0x05

# Size estimate in vbytes for P2WPKH inputs
TX_OVERHEAD_VBYTES = 11
INPUT_VBYTES = 68
OUTPUT_VBYTES = 31


def dsha256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def varint(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def estimate_vsize(n_inputs: int, n_outputs: int) -> int:
    return TX_OVERHEAD_VBYTES + INPUT_VBYTES * n_inputs + OUTPUT_VBYTES * n_outputs


def address_to_script(address: str) -> bytes:
    """Build the scriptPubKey paying to a mainnet address.

    Raises:
        ValueError: If the address is not a mainnet P2PKH, P2SH or SegWit address
    """
    if address.lower().startswith(BECH32_HRP + "1"):
        try:
            version, program = SegwitBech32Decoder.Decode(BECH32_HRP, address)
        except (ValueError, Bech32ChecksumError) as e:
            raise ValueError(f"Invalid bech32 address: {e}") from e
        op_version = 0 if version == 0 else 0x50 + version
        return bytes([op_version, len(program)]) + program

    payload = base58.b58decode_check(address)
    if len(payload) != 21:
        raise ValueError("Invalid base58 address length")
    version, digest = payload[0], payload[1:]
    if version == P2PKH_VERSION:
        return b"\x76\xa9\x14" + digest + b"\x88\xac"
    if version == P2SH_VERSION:
        return b"\xa9\x14" + digest + b"\x87"
    raise ValueError(f"Unsupported address version: {version}")


def select_utxos(utxos: list[dict], amount_sat: int, fee_rate: int) -> tuple[list[dict], int, int]:
    """Largest-first coin selection.

    Returns:
        (selected inputs, fee in satoshis, change in satoshis)

    Raises:
        InsufficientBalance: If the UTXOs cannot cover amount plus fee
    """
    selected: list[dict] = []
    total = 0
    for utxo in sorted(utxos, key=lambda u: u["value"], reverse=True):
        selected.append(utxo)
        total += utxo["value"]

        fee_with_change = fee_rate * estimate_vsize(len(selected), 2)
        change = total - amount_sat - fee_with_change
        if change >= DUST_LIMIT:
            return selected, fee_with_change, change

        # Sub-dust change is left to the miner
        fee_no_change = fee_rate * estimate_vsize(len(selected), 1)
        if total - amount_sat >= fee_no_change:
            return selected, total - amount_sat, 0

    available = Decimal(total).scaleb(-8)
    raise InsufficientBalance(Decimal(amount_sat).scaleb(-8), available)


class BitcoinAdapter(ChainAdapter):
    """Adapter for Bitcoin mainnet."""

    def __init__(
        self,
        config: ChainConfig,
        endpoint: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        fee_endpoint: Optional[str] = None,
    ):
        super().__init__(config, endpoint, client, timeout)
        self.fee_endpoint = (fee_endpoint or get_settings().btc_fee_api_url).rstrip("/")

    def validate_address(self, address: str) -> bool:
        if not isinstance(address, str) or not 26 <= len(address) <= 90:
            return False
        try:
            address_to_script(address)
            return True
        except ValueError:
            return False

    async def _get_json(self, url: str, error_cls: type[RemoteError]):
        try:
            async with self._session() as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Bitcoin API request failed ({url}): {e}")
            raise error_cls("Bitcoin API request failed", str(e)) from e

    async def get_balance(self, address: str) -> Decimal:
        """Confirmed balance: funded minus spent outputs."""
        self.require_address(address)
        data = await self._get_json(f"{self.endpoint}/address/{address}", BalanceUnavailable)
        try:
            stats = data["chain_stats"]
            sats = int(stats["funded_txo_sum"]) - int(stats["spent_txo_sum"])
        except (KeyError, TypeError, ValueError) as e:
            raise BalanceUnavailable("Malformed address stats", str(e)) from e
        return self.config.from_base_units(sats)

    async def _get_fee_rate(self) -> int:
        """Fee rate in sat/vB targeting confirmation within ~30 minutes."""
        data = await self._get_json(f"{self.fee_endpoint}/v1/fees/recommended", FeeUnavailable)
        try:
            rate = int(data["halfHourFee"])
        except (KeyError, TypeError, ValueError) as e:
            raise FeeUnavailable("Malformed fee response", str(e)) from e
        if rate <= 0:
            raise FeeUnavailable("Fee rate not positive", str(rate))
        return rate

    async def _get_utxos(self, address: str, error_cls: type[RemoteError]) -> list[dict]:
        data = await self._get_json(f"{self.endpoint}/address/{address}/utxo", error_cls)
        try:
            return [
                {"txid": u["txid"], "vout": int(u["vout"]), "value": int(u["value"])}
                for u in data
                if u.get("status", {}).get("confirmed", False)
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise error_cls("Malformed UTXO list", str(e)) from e

    async def estimate_fee(self, from_address: str, to_address: str, amount: Decimal) -> FeeEstimate:
        """Estimate fee from the recommended rate and the selected inputs."""
        fee_rate = await self._get_fee_rate()
        utxos = await self._get_utxos(from_address, FeeUnavailable)
        amount_sat = self.config.to_base_units(amount)

        try:
            selected, fee_sat, change = select_utxos(utxos, amount_sat, fee_rate)
            vsize = estimate_vsize(len(selected), 2 if change else 1)
        except InsufficientBalance:
            # Estimate as if every input were spent
            vsize = estimate_vsize(max(len(utxos), 1), 2)
            fee_sat = fee_rate * vsize

        return FeeEstimate(
            chain=self.chain,
            symbol=self.config.symbol,
            unit_price=fee_rate,
            units=vsize,
            fee=self.config.from_base_units(fee_sat),
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

        fee_rate = fee.unit_price if fee is not None else await self._get_fee_rate()
        utxos = await self._get_utxos(from_address, RemoteError)
        amount_sat = self.config.to_base_units(amount)
        selected, fee_sat, change = select_utxos(utxos, amount_sat, fee_rate)

        outputs = [(to_address, amount_sat)]
        if change:
            outputs.append((from_address, change))

        actual_fee = FeeEstimate(
            chain=self.chain,
            symbol=self.config.symbol,
            unit_price=fee_rate,
            units=estimate_vsize(len(selected), len(outputs)),
            fee=self.config.from_base_units(fee_sat),
            fee_usd=fee.fee_usd if fee is not None else None,
            fee_usd_is_live=fee.fee_usd_is_live if fee is not None else False,
        )
        return UnsignedTransfer(
            chain=self.chain,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            fee=actual_fee,
            payload={"inputs": selected, "outputs": outputs},
        )

    def sign_transfer(self, unsigned: UnsignedTransfer, key: KeyMaterial) -> SignedTransaction:
        """Sign every input as P2WPKH owned by the sending address."""
        own_address = P2WPKHAddrEncoder.EncodeKey(key.public_key, hrp=BECH32_HRP, wit_ver=0)
        if own_address != unsigned.from_address:
            raise ValueError("Key material does not match the sending address")

        _, pubkey_hash = SegwitBech32Decoder.Decode(BECH32_HRP, unsigned.from_address)
        script_code = b"\x19\x76\xa9\x14" + pubkey_hash + b"\x88\xac"

        inputs = unsigned.payload["inputs"]
        outputs = unsigned.payload["outputs"]

        version = struct.pack("<I", TX_VERSION)
        locktime = struct.pack("<I", 0)
        sequence = struct.pack("<I", SEQUENCE_RBF)

        outpoints = [bytes.fromhex(u["txid"])[::-1] + struct.pack("<I", u["vout"]) for u in inputs]
        serialized_outputs = b"".join(
            struct.pack("<Q", value) + varint(len(script)) + script
            for script, value in ((address_to_script(addr), value) for addr, value in outputs)
        )

        hash_prevouts = dsha256(b"".join(outpoints))
        hash_sequence = dsha256(sequence * len(inputs))
        hash_outputs = dsha256(serialized_outputs)

        signing_key = SigningKey.from_string(key.private_key_bytes(), curve=SECP256k1)
        witnesses = []
        for outpoint, utxo in zip(outpoints, inputs):
            preimage = (
                version
                + hash_prevouts
                + hash_sequence
                + outpoint
                + script_code
                + struct.pack("<Q", utxo["value"])
                + sequence
                + hash_outputs
                + locktime
                + struct.pack("<I", SIGHASH_ALL)
            )
            signature = signing_key.sign_digest_deterministic(
                dsha256(preimage),
                hashfunc=hashlib.sha256,
                sigencode=sigencode_der_canonize,
            ) + bytes([SIGHASH_ALL])
            witnesses.append(
                b"\x02"
                + varint(len(signature)) + signature
                + varint(len(key.public_key)) + key.public_key
            )

        tx_inputs = b"".join(outpoint + b"\x00" + sequence for outpoint in outpoints)
        body = varint(len(inputs)) + tx_inputs + varint(len(outputs)) + serialized_outputs

        legacy = version + body + locktime
        raw = version + b"\x00\x01" + body + b"".join(witnesses) + locktime
        txid = dsha256(legacy)[::-1].hex()

        return SignedTransaction(chain=self.chain, raw=raw, tx_hash=txid)

    async def broadcast(self, signed: SignedTransaction) -> str:
        response = await self._send_for_broadcast(
            signed,
            "POST",
            f"{self.endpoint}/tx",
            content=signed.raw.hex(),
            headers={"Content-Type": "text/plain"},
        )
        if response.status_code >= 400:
            logger.error(f"Bitcoin broadcast rejected: {response.text}")
            raise BroadcastError("Transaction rejected", response.text.strip())

        txid = response.text.strip()
        if txid != signed.tx_hash:
            logger.warning(f"Esplora returned txid {txid}, expected {signed.tx_hash}")
        logger.info(f"Broadcast bitcoin tx {txid}")
        return txid

    async def get_status(self, tx_hash: str) -> TransactionStatus:
        """Bitcoin has no failed state; unconfirmed and unknown txs are pending."""
        url = f"{self.endpoint}/tx/{tx_hash}/status"
        try:
            async with self._session() as client:
                response = await client.get(url)
                if response.status_code == 404:
                    return TransactionStatus.PENDING
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StatusUnknown("Bitcoin status request failed", str(e)) from e

        if not isinstance(data, dict):
            raise StatusUnknown("Malformed status response", repr(data))
        return TransactionStatus.CONFIRMED if data.get("confirmed") else TransactionStatus.PENDING
