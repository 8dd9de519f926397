"""Wallet application facade.

Wires settings, storage, the vault, chain adapters, prices and quotes
into one object for an embedding UI.
"""

import logging
from decimal import Decimal
from typing import Optional, Union

from vaultwallet.chains import Chain, parse_chain
from vaultwallet.config import Settings, get_settings
from vaultwallet.errors import VaultLocked
from vaultwallet.quotes import CoinGeckoPriceProvider, OneInchQuoteProvider, QuoteAggregator, SwapQuote
from vaultwallet.quotes.base import PriceProvider
from vaultwallet.services.transfer import TransferPipeline
from vaultwallet.services.wallet_state import ChainAccount, Transaction, WalletState
from vaultwallet.storage import KeyValueStore, SqlKeyValueStore, close_db, init_db
from vaultwallet.vault import VaultSession, WalletVault


logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging once for the process."""
    settings = settings or get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO, including full RPC URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)


class WalletApp:
    """Main application object.

    Usage:
        app = WalletApp()
        await app.start()
        phrase = await app.create_wallet("credential")
        await app.unlock("credential", user_verified=True)
        account = await app.add_account("ethereum")
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        price_provider: Optional[PriceProvider] = None,
        quotes: Optional[QuoteAggregator] = None,
        state: Optional[WalletState] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self._owns_database = store is None
        self.store = store if store is not None else SqlKeyValueStore()
        self.vault = WalletVault(self.store)
        self.prices = price_provider if price_provider is not None else CoinGeckoPriceProvider()
        self.quotes = quotes if quotes is not None else QuoteAggregator([OneInchQuoteProvider()])
        self.state = state if state is not None else WalletState(price_provider=self.prices)
        self.pipeline = TransferPipeline(self.state, self.prices)
        self.session: Optional[VaultSession] = None

    async def start(self) -> None:
        """Prepare storage."""
        configure_logging(self.settings)
        logger.info(f"Starting vaultwallet ({self.settings.environment})")
        if self._owns_database:
            await init_db()
            logger.info("Database initialized")

    async def stop(self) -> None:
        self.lock()
        if self._owns_database:
            await close_db()
        logger.info("Stopped vaultwallet")

    def _require_session(self) -> VaultSession:
        if self.session is None or self.session.is_locked:
            raise VaultLocked("Wallet is locked")
        return self.session

    # Vault lifecycle
    async def create_wallet(self, credential: Union[str, bytes]) -> str:
        """Create a wallet and return its mnemonic for backup."""
        phrase = await self.vault.create(credential)
        self.state.reset()
        return phrase

    async def import_wallet(self, phrase: str, credential: Union[str, bytes]) -> None:
        await self.vault.import_mnemonic(phrase, credential)
        self.state.reset()

    async def unlock(self, credential: Union[str, bytes], user_verified: bool = True) -> VaultSession:
        """Open a session and load the saved accounts and history."""
        self.session = await self.vault.unlock(credential, user_verified=user_verified)
        await self.state.load(self.session)
        return self.session

    def lock(self) -> None:
        if self.session is not None:
            self.session.lock()
        self.session = None

    async def change_credential(self, old_credential: Union[str, bytes], new_credential: Union[str, bytes]) -> None:
        """Change the credential; the wallet must be unlocked again afterwards."""
        await self.vault.change_credential(old_credential, new_credential)
        self.lock()

    async def save(self) -> None:
        await self.state.save(self._require_session())

    async def clear_all_data(self) -> None:
        """Forget every account, transaction and the encrypted mnemonic."""
        self.lock()
        self.state.reset()
        await self.vault.wipe()
        await self.store.clear()
        logger.warning("All wallet data cleared")

    # Accounts
    async def add_account(self, chain: Union[Chain, str], name: Optional[str] = None) -> ChainAccount:
        account = await self.state.create_account(self._require_session(), chain, name)
        await self.save()
        return account

    async def add_watch_only(self, chain: Union[Chain, str], address: str, name: Optional[str] = None) -> ChainAccount:
        account = self.state.add_watch_only(chain, address, name)
        await self.save()
        return account

    async def rename_account(self, account_id: str, name: str) -> ChainAccount:
        account = self.state.rename_account(account_id, name)
        await self.save()
        return account

    async def remove_account(self, account_id: str) -> None:
        self.state.remove_account(account_id)
        await self.save()

    async def refresh(self) -> None:
        """Refresh prices, balances and pending transactions."""
        await self.state.refresh_prices()
        await self.state.refresh_balances()
        await self.state.poll_pending()
        if self.session is not None and not self.session.is_locked:
            await self.save()

    # Transfers and quotes
    async def send(
        self,
        account_id: str,
        to_address: str,
        amount: Union[Decimal, str, int],
        accept_unknown_fee: bool = False,
    ) -> Transaction:
        session = self._require_session()
        tx = await self.pipeline.send(
            account_id, to_address, amount, session, accept_unknown_fee=accept_unknown_fee
        )
        await self.save()
        return tx

    async def get_swap_quote(
        self,
        chain: Union[Chain, str],
        from_asset: str,
        to_asset: str,
        amount: Union[Decimal, str],
        slippage_percent: Optional[Decimal] = None,
    ) -> SwapQuote:
        return await self.quotes.get_best_quote(
            parse_chain(chain), from_asset, to_asset, Decimal(amount), slippage_percent
        )
