"""Tests for chain adapters against mocked endpoints."""

from decimal import Decimal

import httpx
import pytest
from eth_account import Account
from eth_utils import decode_hex, encode_hex, keccak
from solders.pubkey import Pubkey
from solders.transaction import Transaction as SolanaTransaction

from vaultwallet.adapters import (
    FeeEstimate,
    SignedTransaction,
    TransactionStatus,
    get_chain_adapter,
)
from vaultwallet.adapters.bitcoin import (
    BitcoinAdapter,
    address_to_script,
    dsha256,
    estimate_vsize,
    select_utxos,
)
from vaultwallet.adapters.evm import EVMAdapter
from vaultwallet.adapters.solana import SolanaAdapter
from vaultwallet.chains import Chain
from vaultwallet.errors import (
    BalanceUnavailable,
    BroadcastError,
    BroadcastUncertain,
    FeeUnavailable,
    InsufficientBalance,
    InvalidAddress,
    StatusUnknown,
    UnsupportedChain,
)
from vaultwallet.hdwallet import derive_account_address, derive_key

from conftest import ABANDON_BTC_ADDRESS, ABANDON_ETH_ADDRESS, ABANDON_MNEMONIC, rest_client, rpc_client

OTHER_ETH_ADDRESS = "0x742d35cc6634c0532925a3b844bc454e4438f44e"
P2PKH_ADDRESS = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
P2SH_ADDRESS = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"
SOLANA_BLOCKHASH = "11111111111111111111111111111111"


def evm_adapter(handlers: dict, calls: list = None) -> EVMAdapter:
    return get_chain_adapter(Chain.ETHEREUM, client=rpc_client(handlers, calls))


def solana_adapter(handlers: dict) -> SolanaAdapter:
    return get_chain_adapter(Chain.SOLANA, client=rpc_client(handlers))


def raise_error(exc_type, message="failed"):
    def handler(params, request):
        raise exc_type(message, request=request)

    return handler


class TestAdapterFactory:
    """Tests for adapter lookup."""

    def test_family_adapters(self):
        """Test that each chain gets its family's adapter."""
        assert isinstance(get_chain_adapter("ethereum"), EVMAdapter)
        assert isinstance(get_chain_adapter("bnb"), EVMAdapter)
        assert isinstance(get_chain_adapter("bitcoin"), BitcoinAdapter)
        assert isinstance(get_chain_adapter("solana"), SolanaAdapter)

    def test_cached_without_client(self):
        """Test that shared adapters are cached but injected ones are not."""
        assert get_chain_adapter(Chain.POLYGON) is get_chain_adapter(Chain.POLYGON)

        client = httpx.AsyncClient()
        assert get_chain_adapter(Chain.POLYGON, client=client) is not get_chain_adapter(Chain.POLYGON)

    def test_unsupported_chain(self):
        """Test that unknown chains raise UnsupportedChain."""
        with pytest.raises(UnsupportedChain):
            get_chain_adapter("tron")


class TestAddressValidation:
    """Tests for local address validation."""

    def test_evm_addresses(self):
        """Test EVM hex and checksum rules."""
        adapter = get_chain_adapter(Chain.ETHEREUM)
        assert adapter.validate_address(ABANDON_ETH_ADDRESS)
        assert adapter.validate_address(ABANDON_ETH_ADDRESS.lower())
        # Flipping the case of one letter breaks the EIP-55 checksum
        assert not adapter.validate_address(ABANDON_ETH_ADDRESS.replace("Ef", "ef"))
        assert not adapter.validate_address(ABANDON_ETH_ADDRESS[:-1])
        assert not adapter.validate_address(ABANDON_ETH_ADDRESS[2:])

    def test_bitcoin_addresses(self):
        """Test bech32, P2PKH and P2SH acceptance."""
        adapter = get_chain_adapter(Chain.BITCOIN)
        assert adapter.validate_address(ABANDON_BTC_ADDRESS)
        assert adapter.validate_address(P2PKH_ADDRESS)
        assert adapter.validate_address(P2SH_ADDRESS)
        assert not adapter.validate_address(ABANDON_BTC_ADDRESS[:-1] + "v")
        assert not adapter.validate_address(P2PKH_ADDRESS[:-1] + "b")

    def test_solana_addresses(self):
        """Test base58 32-byte public keys."""
        adapter = get_chain_adapter(Chain.SOLANA)
        assert adapter.validate_address(derive_account_address(ABANDON_MNEMONIC, Chain.SOLANA, 0))
        assert adapter.validate_address(SOLANA_BLOCKHASH)
        assert not adapter.validate_address("short")

    def test_cross_family_addresses_rejected(self):
        """Test that no family accepts another family's address."""
        evm = get_chain_adapter(Chain.ETHEREUM)
        btc = get_chain_adapter(Chain.BITCOIN)
        sol = get_chain_adapter(Chain.SOLANA)
        sol_address = derive_account_address(ABANDON_MNEMONIC, Chain.SOLANA, 0)

        assert not evm.validate_address(ABANDON_BTC_ADDRESS)
        assert not evm.validate_address(sol_address)
        assert not btc.validate_address(ABANDON_ETH_ADDRESS)
        assert not btc.validate_address(sol_address)
        assert not sol.validate_address(ABANDON_ETH_ADDRESS)
        assert not sol.validate_address(ABANDON_BTC_ADDRESS)


class TestEVMAdapter:
    """Tests for the EVM JSON-RPC adapter."""

    @pytest.mark.asyncio
    async def test_get_balance(self):
        """Test wei to ETH conversion."""
        adapter = evm_adapter({"eth_getBalance": "0xde0b6b3a7640000"})
        assert await adapter.get_balance(ABANDON_ETH_ADDRESS) == Decimal("1")

    @pytest.mark.asyncio
    async def test_get_balance_invalid_address(self):
        """Test that malformed addresses fail before any request."""
        calls = []
        adapter = evm_adapter({}, calls)
        with pytest.raises(InvalidAddress):
            await adapter.get_balance("0x1234")
        assert calls == []

    @pytest.mark.asyncio
    async def test_get_balance_unavailable(self):
        """Test that transport and RPC errors raise BalanceUnavailable."""
        adapter = evm_adapter({"eth_getBalance": raise_error(httpx.ReadTimeout)})
        with pytest.raises(BalanceUnavailable) as exc:
            await adapter.get_balance(ABANDON_ETH_ADDRESS)
        assert exc.value.retryable

        adapter = evm_adapter({})
        with pytest.raises(BalanceUnavailable):
            await adapter.get_balance(ABANDON_ETH_ADDRESS)

    @pytest.mark.asyncio
    async def test_estimate_fee(self):
        """Test fee as gas price times gas."""
        adapter = evm_adapter({"eth_gasPrice": "0x3b9aca00", "eth_estimateGas": "0x5208"})
        fee = await adapter.estimate_fee(ABANDON_ETH_ADDRESS, OTHER_ETH_ADDRESS, Decimal("0.1"))

        assert fee.unit_price == 10**9
        assert fee.units == 21000
        assert fee.fee == Decimal("0.000021")
        assert fee.symbol == "ETH"

    @pytest.mark.asyncio
    async def test_estimate_fee_gas_floor(self):
        """Test that estimates below a plain transfer are raised to 21000."""
        adapter = evm_adapter({"eth_gasPrice": "0x1", "eth_estimateGas": "0x100"})
        fee = await adapter.estimate_fee(ABANDON_ETH_ADDRESS, OTHER_ETH_ADDRESS, Decimal("0.1"))
        assert fee.units == 21000

    @pytest.mark.asyncio
    async def test_estimate_fee_unavailable(self):
        """Test that a timeout raises FeeUnavailable."""
        adapter = evm_adapter({"eth_gasPrice": raise_error(httpx.ReadTimeout)})
        with pytest.raises(FeeUnavailable):
            await adapter.estimate_fee(ABANDON_ETH_ADDRESS, OTHER_ETH_ADDRESS, Decimal("0.1"))

    @pytest.mark.asyncio
    async def test_build_and_sign(self):
        """Test that the signed transaction recovers to the sender."""
        adapter = evm_adapter({"eth_getTransactionCount": "0x5"})
        fee = FeeEstimate(Chain.ETHEREUM, "ETH", unit_price=10**9, units=21000, fee=Decimal("0.000021"))
        unsigned = await adapter.build_transfer(ABANDON_ETH_ADDRESS, OTHER_ETH_ADDRESS, Decimal("0.5"), fee)

        assert unsigned.payload["nonce"] == 5
        assert unsigned.payload["chainId"] == 1
        assert unsigned.payload["value"] == 5 * 10**17

        key = derive_key(ABANDON_MNEMONIC, Chain.ETHEREUM, 0)
        signed = adapter.sign_transfer(unsigned, key)

        assert Account.recover_transaction(signed.raw) == ABANDON_ETH_ADDRESS
        assert signed.tx_hash == encode_hex(keccak(signed.raw))

    @pytest.mark.asyncio
    async def test_sign_with_wrong_key(self):
        """Test that a key for another address is refused."""
        adapter = evm_adapter({"eth_getTransactionCount": "0x0", "eth_gasPrice": "0x1"})
        unsigned = await adapter.build_transfer(ABANDON_ETH_ADDRESS, OTHER_ETH_ADDRESS, Decimal("0.5"))

        with pytest.raises(ValueError):
            adapter.sign_transfer(unsigned, derive_key(ABANDON_MNEMONIC, Chain.ETHEREUM, 1))

    @pytest.mark.asyncio
    async def test_broadcast(self):
        """Test that the node's hash is returned."""

        def send(params, request):
            return encode_hex(keccak(decode_hex(params[0])))

        adapter = evm_adapter({"eth_sendRawTransaction": send})
        raw = b"\x01\x02\x03"
        signed = SignedTransaction(Chain.ETHEREUM, raw=raw, tx_hash=encode_hex(keccak(raw)))

        assert await adapter.broadcast(signed) == signed.tx_hash

    @pytest.mark.asyncio
    async def test_broadcast_rejected(self):
        """Test that an RPC error is a BroadcastError carrying the node's message."""
        signed = SignedTransaction(Chain.ETHEREUM, raw=b"\x01", tx_hash="0xabc")
        adapter = evm_adapter({
            "eth_sendRawTransaction": lambda params, request: httpx.Response(
                200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "nonce too low"}}
            )
        })
        with pytest.raises(BroadcastError) as exc:
            await adapter.broadcast(signed)
        assert exc.value.detail == "nonce too low"
        assert not exc.value.retryable

    @pytest.mark.asyncio
    async def test_broadcast_connect_failure(self):
        """Test that a request that never connected is a plain failure."""
        adapter = evm_adapter({"eth_sendRawTransaction": raise_error(httpx.ConnectError)})
        signed = SignedTransaction(Chain.ETHEREUM, raw=b"\x01", tx_hash="0xabc")

        with pytest.raises(BroadcastError):
            await adapter.broadcast(signed)

    @pytest.mark.asyncio
    async def test_broadcast_uncertain(self):
        """Test that a read timeout keeps the local hash."""
        adapter = evm_adapter({"eth_sendRawTransaction": raise_error(httpx.ReadTimeout)})
        signed = SignedTransaction(Chain.ETHEREUM, raw=b"\x01", tx_hash="0xabc")

        with pytest.raises(BroadcastUncertain) as exc:
            await adapter.broadcast(signed)
        assert exc.value.tx_hash == "0xabc"

    @pytest.mark.asyncio
    async def test_get_status(self):
        """Test receipt mapping to status."""
        assert await evm_adapter({"eth_getTransactionReceipt": None}).get_status("0xabc") == TransactionStatus.PENDING
        assert (
            await evm_adapter({"eth_getTransactionReceipt": {"status": "0x1"}}).get_status("0xabc")
            == TransactionStatus.CONFIRMED
        )
        assert (
            await evm_adapter({"eth_getTransactionReceipt": {"status": "0x0"}}).get_status("0xabc")
            == TransactionStatus.FAILED
        )

    @pytest.mark.asyncio
    async def test_get_status_unknown(self):
        """Test that a failed lookup raises StatusUnknown."""
        adapter = evm_adapter({"eth_getTransactionReceipt": raise_error(httpx.ConnectError)})
        with pytest.raises(StatusUnknown):
            await adapter.get_status("0xabc")


UTXOS = [
    {"txid": "aa" * 32, "vout": 0, "value": 100000, "status": {"confirmed": True}},
    {"txid": "bb" * 32, "vout": 1, "value": 50000, "status": {"confirmed": False}},
]


def esplora_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/v1/fees/recommended"):
        return httpx.Response(200, json={"fastestFee": 20, "halfHourFee": 10, "hourFee": 5})
    if path.endswith("/utxo"):
        return httpx.Response(200, json=UTXOS)
    if "/address/" in path:
        return httpx.Response(
            200, json={"chain_stats": {"funded_txo_sum": 150000, "spent_txo_sum": 50000}}
        )
    if path.endswith("/tx") and request.method == "POST":
        return httpx.Response(200, text="f" * 64)
    if path.endswith("/status"):
        return httpx.Response(200, json={"confirmed": True, "block_height": 800000})
    return httpx.Response(404, text="Not found")


class TestBitcoinHelpers:
    """Tests for Bitcoin scripts and coin selection."""

    def test_address_scripts(self):
        """Test scriptPubKey construction for each address type."""
        script = address_to_script(ABANDON_BTC_ADDRESS)
        assert script[:2] == b"\x00\x14" and len(script) == 22

        script = address_to_script(P2PKH_ADDRESS)
        assert script[:3] == b"\x76\xa9\x14" and script[-2:] == b"\x88\xac"

        script = address_to_script(P2SH_ADDRESS)
        assert script[:2] == b"\xa9\x14" and script[-1:] == b"\x87"

    def test_vsize(self):
        """Test the P2WPKH size estimate."""
        assert estimate_vsize(1, 2) == 11 + 68 + 62

    def test_select_with_change(self):
        """Test largest-first selection with change."""
        utxos = [{"txid": "a", "vout": 0, "value": 30000}, {"txid": "b", "vout": 0, "value": 100000}]
        selected, fee, change = select_utxos(utxos, 50000, 10)

        assert [u["txid"] for u in selected] == ["b"]
        assert fee == 1410
        assert change == 100000 - 50000 - 1410

    def test_select_dust_change_goes_to_fee(self):
        """Test that change below the dust limit is dropped."""
        selected, fee, change = select_utxos([{"txid": "a", "vout": 0, "value": 50500}], 50000, 1)
        assert change == 0
        assert fee == 500

    def test_select_insufficient(self):
        """Test that uncoverable amounts raise InsufficientBalance."""
        with pytest.raises(InsufficientBalance):
            select_utxos([{"txid": "a", "vout": 0, "value": 1000}], 50000, 1)


class TestBitcoinAdapter:
    """Tests for the Esplora adapter."""

    @pytest.fixture
    def adapter(self):
        return get_chain_adapter(Chain.BITCOIN, client=rest_client(esplora_handler))

    @pytest.mark.asyncio
    async def test_get_balance(self, adapter):
        """Test confirmed funded minus spent."""
        assert await adapter.get_balance(ABANDON_BTC_ADDRESS) == Decimal("0.001")

    @pytest.mark.asyncio
    async def test_estimate_fee(self, adapter):
        """Test fee from the half-hour rate and confirmed inputs."""
        fee = await adapter.estimate_fee(ABANDON_BTC_ADDRESS, P2PKH_ADDRESS, Decimal("0.0005"))

        assert fee.unit_price == 10
        assert fee.units == estimate_vsize(1, 2)
        assert fee.fee == Decimal("0.0000141")

    @pytest.mark.asyncio
    async def test_estimate_fee_unavailable(self):
        """Test that a failing fee API raises FeeUnavailable."""
        adapter = get_chain_adapter(
            Chain.BITCOIN, client=rest_client(lambda request: httpx.Response(503, text="down"))
        )
        with pytest.raises(FeeUnavailable):
            await adapter.estimate_fee(ABANDON_BTC_ADDRESS, P2PKH_ADDRESS, Decimal("0.0005"))

    @pytest.mark.asyncio
    async def test_build_ignores_unconfirmed(self, adapter):
        """Test that only confirmed UTXOs are spent."""
        with pytest.raises(InsufficientBalance):
            await adapter.build_transfer(ABANDON_BTC_ADDRESS, P2PKH_ADDRESS, Decimal("0.0012"))

    @pytest.mark.asyncio
    async def test_build_and_sign(self, adapter):
        """Test a signed SegWit spend with change."""
        unsigned = await adapter.build_transfer(ABANDON_BTC_ADDRESS, P2PKH_ADDRESS, Decimal("0.0005"))
        assert unsigned.payload["outputs"][0] == (P2PKH_ADDRESS, 50000)
        assert unsigned.payload["outputs"][1] == (ABANDON_BTC_ADDRESS, 48590)
        assert unsigned.fee.fee == Decimal("0.0000141")

        key = derive_key(ABANDON_MNEMONIC, Chain.BITCOIN, 0)
        signed = adapter.sign_transfer(unsigned, key)

        # version 2, segwit marker and flag
        assert signed.raw[:6] == bytes.fromhex("020000000001")
        assert len(signed.tx_hash) == 64
        # RFC6979 signatures are deterministic
        assert adapter.sign_transfer(unsigned, key).raw == signed.raw

    @pytest.mark.asyncio
    async def test_txid_excludes_witness(self, adapter):
        """Test that the txid hashes the legacy serialization."""
        unsigned = await adapter.build_transfer(ABANDON_BTC_ADDRESS, P2PKH_ADDRESS, Decimal("0.0005"))
        signed = adapter.sign_transfer(unsigned, derive_key(ABANDON_MNEMONIC, Chain.BITCOIN, 0))

        # 1 input, 2 outputs: body ends right before the witness stack
        raw = signed.raw
        body_end = 6 + 1 + 41 + 1 + (8 + 1 + 25) + (8 + 1 + 22)
        legacy = raw[:4] + raw[6:body_end] + raw[-4:]
        assert dsha256(legacy)[::-1].hex() == signed.tx_hash

    @pytest.mark.asyncio
    async def test_sign_with_wrong_key(self, adapter):
        """Test that a key for another address is refused."""
        unsigned = await adapter.build_transfer(ABANDON_BTC_ADDRESS, P2PKH_ADDRESS, Decimal("0.0005"))
        with pytest.raises(ValueError):
            adapter.sign_transfer(unsigned, derive_key(ABANDON_MNEMONIC, Chain.BITCOIN, 1))

    @pytest.mark.asyncio
    async def test_broadcast(self, adapter):
        """Test that the returned txid is passed through."""
        signed = SignedTransaction(Chain.BITCOIN, raw=b"\x02\x00", tx_hash="f" * 64)
        assert await adapter.broadcast(signed) == "f" * 64

    @pytest.mark.asyncio
    async def test_broadcast_rejected(self):
        """Test that an HTTP 400 is a BroadcastError."""
        adapter = get_chain_adapter(
            Chain.BITCOIN,
            client=rest_client(lambda request: httpx.Response(400, text="sendrawtransaction RPC error: bad-txns")),
        )
        signed = SignedTransaction(Chain.BITCOIN, raw=b"\x02\x00", tx_hash="f" * 64)

        with pytest.raises(BroadcastError) as exc:
            await adapter.broadcast(signed)
        assert "bad-txns" in exc.value.detail

    @pytest.mark.asyncio
    async def test_get_status(self, adapter):
        """Test confirmed and unknown transactions."""
        assert await adapter.get_status("f" * 64) == TransactionStatus.CONFIRMED

        missing = get_chain_adapter(
            Chain.BITCOIN, client=rest_client(lambda request: httpx.Response(404, text="Transaction not found"))
        )
        assert await missing.get_status("f" * 64) == TransactionStatus.PENDING


class TestSolanaAdapter:
    """Tests for the Solana JSON-RPC adapter."""

    @pytest.fixture
    def sender(self):
        return derive_account_address(ABANDON_MNEMONIC, Chain.SOLANA, 0)

    @pytest.fixture
    def recipient(self):
        return derive_account_address(ABANDON_MNEMONIC, Chain.SOLANA, 1)

    @pytest.mark.asyncio
    async def test_get_balance(self, sender):
        """Test lamports to SOL conversion."""
        adapter = solana_adapter({"getBalance": {"context": {"slot": 1}, "value": 1500000000}})
        assert await adapter.get_balance(sender) == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_estimate_fee(self, sender, recipient):
        """Test the cluster's fee for a transfer message."""
        adapter = solana_adapter({
            "getLatestBlockhash": {"value": {"blockhash": SOLANA_BLOCKHASH, "lastValidBlockHeight": 10}},
            "getFeeForMessage": {"context": {"slot": 1}, "value": 5000},
        })
        fee = await adapter.estimate_fee(sender, recipient, Decimal("0.1"))

        assert fee.fee == Decimal("0.000005")
        assert fee.units == 1
        assert fee.unit_price == 5000

    @pytest.mark.asyncio
    async def test_estimate_fee_unpriced(self, sender, recipient):
        """Test that a null fee raises FeeUnavailable."""
        adapter = solana_adapter({
            "getLatestBlockhash": {"value": {"blockhash": SOLANA_BLOCKHASH, "lastValidBlockHeight": 10}},
            "getFeeForMessage": {"context": {"slot": 1}, "value": None},
        })
        with pytest.raises(FeeUnavailable):
            await adapter.estimate_fee(sender, recipient, Decimal("0.1"))

    @pytest.mark.asyncio
    async def test_build_and_sign(self, sender, recipient):
        """Test that the signature is the transaction id."""
        adapter = solana_adapter({
            "getLatestBlockhash": {"value": {"blockhash": SOLANA_BLOCKHASH, "lastValidBlockHeight": 10}},
        })
        unsigned = await adapter.build_transfer(sender, recipient, Decimal("0.25"))
        assert unsigned.payload["lamports"] == 250_000_000

        signed = adapter.sign_transfer(unsigned, derive_key(ABANDON_MNEMONIC, Chain.SOLANA, 0))
        tx = SolanaTransaction.from_bytes(signed.raw)

        assert str(tx.signatures[0]) == signed.tx_hash
        assert tx.message.account_keys[0] == Pubkey.from_string(sender)

    @pytest.mark.asyncio
    async def test_broadcast_rejected(self):
        """Test that a preflight error is a BroadcastError."""
        adapter = solana_adapter({
            "sendTransaction": lambda params, request: httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "error": {"code": -32002, "message": "Transaction simulation failed: Blockhash not found"},
                },
            )
        })
        signed = SignedTransaction(Chain.SOLANA, raw=b"\x01", tx_hash="sig")

        with pytest.raises(BroadcastError) as exc:
            await adapter.broadcast(signed)
        assert "Blockhash not found" in exc.value.detail

    @pytest.mark.asyncio
    async def test_get_status(self):
        """Test signature status mapping."""

        def status(value):
            return solana_adapter({"getSignatureStatuses": {"context": {"slot": 1}, "value": [value]}})

        assert await status(None).get_status("sig") == TransactionStatus.PENDING
        assert (
            await status({"err": None, "confirmationStatus": "confirmed"}).get_status("sig")
            == TransactionStatus.PENDING
        )
        assert (
            await status({"err": None, "confirmationStatus": "finalized"}).get_status("sig")
            == TransactionStatus.CONFIRMED
        )
        assert (
            await status({"err": {"InstructionError": [0, "Custom"]}, "confirmationStatus": "confirmed"}).get_status("sig")
            == TransactionStatus.FAILED
        )
