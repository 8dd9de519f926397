"""Tests for the application facade and settings."""

from decimal import Decimal

import pytest

from vaultwallet.app import WalletApp
from vaultwallet.chains import Chain, get_chain_config, get_coingecko_id, parse_chain
from vaultwallet.config import Settings
from vaultwallet.errors import DecryptionError, QuoteUnavailable, UnsupportedChain, VaultLocked, WalletError
from vaultwallet.quotes import QuoteAggregator

from conftest import ABANDON_ETH_ADDRESS, ABANDON_MNEMONIC, CREDENTIAL, StaticPriceProvider


@pytest.fixture
def app(memory_store):
    return WalletApp(
        store=memory_store,
        price_provider=StaticPriceProvider({"ETH": 2000}),
        quotes=QuoteAggregator([]),
    )


class TestWalletApp:
    """Tests for WalletApp."""

    @pytest.mark.asyncio
    async def test_locked_until_unlocked(self, app):
        """Test that account operations need an unlocked wallet."""
        await app.start()
        await app.import_wallet(ABANDON_MNEMONIC, CREDENTIAL)

        with pytest.raises(VaultLocked):
            await app.add_account(Chain.ETHEREUM)

    @pytest.mark.asyncio
    async def test_accounts_persist_across_unlocks(self, memory_store, app):
        """Test that a second app instance reloads saved accounts."""
        await app.start()
        await app.import_wallet(ABANDON_MNEMONIC, CREDENTIAL)
        await app.unlock(CREDENTIAL)
        account = await app.add_account("ethereum", name="Main")
        await app.add_watch_only(Chain.BITCOIN, "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa")
        await app.stop()

        reopened = WalletApp(store=memory_store, price_provider=StaticPriceProvider({}), quotes=QuoteAggregator([]))
        await reopened.unlock(CREDENTIAL)

        restored = reopened.state.get_account(account.id)
        assert restored.address == ABANDON_ETH_ADDRESS
        assert restored.name == "Main"
        assert len(reopened.state.accounts) == 2

    @pytest.mark.asyncio
    async def test_change_credential_locks(self, app):
        """Test that a credential change requires unlocking again."""
        await app.create_wallet(CREDENTIAL)
        await app.unlock(CREDENTIAL)
        await app.change_credential(CREDENTIAL, "new credential")

        assert app.session is None
        with pytest.raises(DecryptionError):
            await app.unlock(CREDENTIAL)
        await app.unlock("new credential")

    @pytest.mark.asyncio
    async def test_clear_all_data(self, app, memory_store):
        """Test that clearing forgets everything."""
        await app.import_wallet(ABANDON_MNEMONIC, CREDENTIAL)
        await app.unlock(CREDENTIAL)
        await app.add_account(Chain.ETHEREUM)

        await app.clear_all_data()

        assert app.state.accounts == {}
        assert await memory_store.keys() == []
        assert not await app.vault.is_initialized()

    @pytest.mark.asyncio
    async def test_swap_quote_unavailable(self, app):
        """Test that no providers means no quote."""
        with pytest.raises(QuoteUnavailable) as exc:
            await app.get_swap_quote("ethereum", "ETH", "USDT", "1")
        assert exc.value.retryable


class TestChainsAndSettings:
    """Tests for the chain registry and settings."""

    def test_parse_chain(self):
        """Test case-insensitive chain lookup."""
        assert parse_chain("Ethereum") == Chain.ETHEREUM
        assert parse_chain(Chain.BNB) == Chain.BNB
        with pytest.raises(UnsupportedChain) as exc:
            parse_chain("litecoin")
        assert isinstance(exc.value, WalletError)

    def test_chain_config(self):
        """Test EVM chain ids and unit conversion."""
        assert get_chain_config("polygon").chain_id == 137
        assert get_chain_config("bnb").chain_id == 56
        assert get_chain_config("bitcoin").to_base_units(Decimal("0.00000001")) == 1
        assert get_chain_config("solana").from_base_units(1_500_000_000) == Decimal("1.5")

    def test_coingecko_ids(self):
        """Test symbol to price id mapping."""
        assert get_coingecko_id("matic") == "matic-network"
        assert get_coingecko_id("USDT") == "tether"
        assert get_coingecko_id("NOPE") is None

    def test_rpc_urls_and_redaction(self):
        """Test endpoint lookup and secret redaction."""
        settings = Settings(
            database_url="postgresql+asyncpg://wallet:hunter2@db/wallet",
            oneinch_api_key="secret-key",
        )

        assert settings.get_rpc_url("bitcoin") == settings.btc_api_url
        assert settings.get_rpc_url("unknown") == ""

        safe = settings.get_safe_dict()
        assert "hunter2" not in safe["database_url"]
        assert safe["quotes"]["oneinch_api_key"] == "***"
