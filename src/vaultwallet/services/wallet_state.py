"""Wallet accounts, transaction history and balance tracking.

Accounts and transactions are plain records held in memory and persisted
as one encrypted record through a VaultSession.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from vaultwallet.adapters import ChainAdapter, TransactionStatus, get_chain_adapter
from vaultwallet.chains import Chain, get_chain_config, parse_chain
from vaultwallet.errors import (
    AccountNotFound,
    InvalidAddress,
    RemoteError,
    StatusUnknown,
    TransferStateError,
    WalletError,
)
from vaultwallet.hdwallet import derive_account_address
from vaultwallet.quotes.base import PriceProvider, TokenPrice
from vaultwallet.vault import VaultSession

logger = logging.getLogger(__name__)

STATE_RECORD = "wallet_state"
STATE_VERSION = 1

AdapterFactory = Callable[[Chain], ChainAdapter]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _decimal_or_none(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


class BalanceStatus(str, Enum):
    """How much to trust a cached balance."""

    UNKNOWN = "unknown"  # never fetched
    LIVE = "live"        # last refresh succeeded
    STALE = "stale"      # last refresh failed, value is from an earlier one


class TransactionKind(str, Enum):
    SEND = "send"
    RECEIVE = "receive"
    SWAP = "swap"


@dataclass
class ChainAccount:
    """One address on one chain, derived or watch-only."""

    chain: Chain
    address: str
    name: str
    derivation_index: Optional[int] = None  # None for watch-only
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    balance: Decimal = Decimal("0")
    balance_usd: Optional[Decimal] = None
    balance_usd_is_live: bool = False  # priced from a live quote
    balance_status: BalanceStatus = BalanceStatus.UNKNOWN
    balance_updated_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_now)

    @property
    def is_watch_only(self) -> bool:
        return self.derivation_index is None

    @property
    def symbol(self) -> str:
        return get_chain_config(self.chain).symbol

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chain": self.chain.value,
            "address": self.address,
            "name": self.name,
            "derivation_index": self.derivation_index,
            "balance": str(self.balance),
            "balance_usd": str(self.balance_usd) if self.balance_usd is not None else None,
            "balance_usd_is_live": self.balance_usd_is_live,
            "balance_status": self.balance_status.value,
            "balance_updated_at": self.balance_updated_at.isoformat() if self.balance_updated_at else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChainAccount":
        updated = data.get("balance_updated_at")
        return cls(
            id=data["id"],
            chain=parse_chain(data["chain"]),
            address=data["address"],
            name=data["name"],
            derivation_index=data.get("derivation_index"),
            balance=Decimal(data.get("balance", "0")),
            balance_usd=_decimal_or_none(data.get("balance_usd")),
            balance_usd_is_live=data.get("balance_usd_is_live", False),
            balance_status=BalanceStatus(data.get("balance_status", BalanceStatus.UNKNOWN.value)),
            balance_updated_at=datetime.fromisoformat(updated) if updated else None,
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class Transaction:
    """A transaction in the wallet's history."""

    hash: str
    chain: Chain
    from_address: str
    to_address: str
    amount: Decimal
    symbol: str
    kind: TransactionKind = TransactionKind.SEND
    status: TransactionStatus = TransactionStatus.PENDING
    fee: Optional[Decimal] = None
    fee_usd: Optional[Decimal] = None
    fee_usd_is_live: bool = False
    broadcast_confirmed: bool = True  # False when the broadcast outcome was unknown
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "hash": self.hash,
            "chain": self.chain.value,
            "from": self.from_address,
            "to": self.to_address,
            "amount": str(self.amount),
            "symbol": self.symbol,
            "kind": self.kind.value,
            "status": self.status.value,
            "fee": str(self.fee) if self.fee is not None else None,
            "fee_usd": str(self.fee_usd) if self.fee_usd is not None else None,
            "fee_usd_is_live": self.fee_usd_is_live,
            "broadcast_confirmed": self.broadcast_confirmed,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        return cls(
            id=data["id"],
            hash=data["hash"],
            chain=parse_chain(data["chain"]),
            from_address=data["from"],
            to_address=data["to"],
            amount=Decimal(data["amount"]),
            symbol=data["symbol"],
            kind=TransactionKind(data["kind"]),
            status=TransactionStatus(data["status"]),
            fee=_decimal_or_none(data.get("fee")),
            fee_usd=_decimal_or_none(data.get("fee_usd")),
            fee_usd_is_live=data.get("fee_usd_is_live", False),
            broadcast_confirmed=data.get("broadcast_confirmed", True),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class WalletState:
    """Accounts, history and prices for one wallet."""

    def __init__(
        self,
        adapter_factory: AdapterFactory = get_chain_adapter,
        price_provider: Optional[PriceProvider] = None,
    ):
        self._adapter_factory = adapter_factory
        self.price_provider = price_provider
        self.accounts: dict[str, ChainAccount] = {}
        self.transactions: list[Transaction] = []
        self.prices: dict[str, TokenPrice] = {}
        self.selected_account_id: Optional[str] = None

    def adapter(self, chain: Union[Chain, str]) -> ChainAdapter:
        return self._adapter_factory(parse_chain(chain))

    # Account operations
    def get_account(self, account_id: str) -> ChainAccount:
        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFound(f"No account with id {account_id}")
        return account

    def accounts_for_chain(self, chain: Union[Chain, str]) -> list[ChainAccount]:
        chain = parse_chain(chain)
        return [a for a in self.accounts.values() if a.chain == chain]

    def _find(self, chain: Chain, address: str) -> Optional[ChainAccount]:
        for account in self.accounts_for_chain(chain):
            if account.address.lower() == address.lower():
                return account
        return None

    def next_derivation_index(self, chain: Union[Chain, str]) -> int:
        """Lowest index not used by a derived account on chain."""
        used = {a.derivation_index for a in self.accounts_for_chain(chain) if not a.is_watch_only}
        index = 0
        while index in used:
            index += 1
        return index

    def _add(self, account: ChainAccount) -> ChainAccount:
        self.accounts[account.id] = account
        if self.selected_account_id is None:
            self.selected_account_id = account.id
        self._apply_price(account)
        return account

    async def create_account(
        self,
        session: VaultSession,
        chain: Union[Chain, str],
        name: Optional[str] = None,
    ) -> ChainAccount:
        """Derive the next account on chain from the vault's mnemonic."""
        chain = parse_chain(chain)
        config = get_chain_config(chain)
        index = self.next_derivation_index(chain)

        async with session.lease_mnemonic("derive_account") as mnemonic:
            address = derive_account_address(mnemonic, chain, index)

        existing = self._find(chain, address)
        if existing is not None:
            # A watch-only entry for this address becomes a derived account
            existing.derivation_index = index
            existing.address = address
            return existing

        account = ChainAccount(
            chain=chain,
            address=address,
            name=name or f"{config.name} {index + 1}",
            derivation_index=index,
        )
        logger.info(f"Created {chain.value} account {account.id} at index {index}: {address}")
        return self._add(account)

    def add_watch_only(self, chain: Union[Chain, str], address: str, name: Optional[str] = None) -> ChainAccount:
        """Track an address without a signing key."""
        chain = parse_chain(chain)
        address = address.strip()
        if not self.adapter(chain).validate_address(address):
            raise InvalidAddress(address, chain.value)

        existing = self._find(chain, address)
        if existing is not None:
            return existing

        account = ChainAccount(
            chain=chain,
            address=address,
            name=name or f"Watch {get_chain_config(chain).name}",
        )
        logger.info(f"Added watch-only {chain.value} account {account.id}: {address}")
        return self._add(account)

    def rename_account(self, account_id: str, name: str) -> ChainAccount:
        name = name.strip()
        if not name:
            raise ValueError("Account name cannot be empty")
        account = self.get_account(account_id)
        account.name = name
        return account

    def remove_account(self, account_id: str) -> None:
        self.get_account(account_id)
        del self.accounts[account_id]
        if self.selected_account_id == account_id:
            self.selected_account_id = next(iter(self.accounts), None)
        logger.info(f"Removed account {account_id}")

    # Transaction operations
    def add_transaction(self, tx: Transaction) -> Transaction:
        self.transactions.insert(0, tx)
        return tx

    def get_transaction(self, tx_id: str) -> Transaction:
        for tx in self.transactions:
            if tx.id == tx_id:
                return tx
        raise KeyError(tx_id)

    def transactions_for_account(self, account_id: str) -> list[Transaction]:
        account = self.get_account(account_id)
        address = account.address.lower()
        return [
            tx for tx in self.transactions
            if tx.chain == account.chain
            and address in (tx.from_address.lower(), tx.to_address.lower())
        ]

    def update_transaction_status(self, tx_id: str, status: TransactionStatus) -> bool:
        """Advance a transaction's status. Returns True if it changed.

        Only pending transactions may move, and only forward.
        """
        tx = self.get_transaction(tx_id)
        if tx.status == status:
            return False
        if tx.status != TransactionStatus.PENDING:
            raise TransferStateError(
                f"Transaction {tx.hash} is already {tx.status.value}, cannot become {status.value}"
            )
        tx.status = status
        logger.info(f"Transaction {tx.hash} is now {status.value}")
        return True

    async def poll_pending(self) -> list[Transaction]:
        """Check every pending transaction once; returns those that changed."""
        pending = [tx for tx in self.transactions if tx.status == TransactionStatus.PENDING]
        changed = []
        for tx in pending:
            try:
                status = await self.adapter(tx.chain).get_status(tx.hash)
            except StatusUnknown as e:
                logger.debug(f"Status of {tx.hash} unknown, keeping pending: {e}")
                continue
            if status != TransactionStatus.PENDING and tx.status == TransactionStatus.PENDING:
                self.update_transaction_status(tx.id, status)
                changed.append(tx)
        return changed

    # Balances and prices
    def _apply_price(self, account: ChainAccount) -> None:
        price = self.prices.get(account.symbol)
        if price is None:
            account.balance_usd = None
            account.balance_usd_is_live = False
            return
        account.balance_usd = account.balance * price.price_usd
        account.balance_usd_is_live = price.is_live

    async def refresh_balances(self, account_ids: Optional[Iterable[str]] = None) -> dict[str, Optional[WalletError]]:
        """Fetch balances concurrently.

        Results are applied only after every fetch has finished, so a
        cancelled refresh leaves the cached balances untouched. A failed
        fetch keeps the previous balance and marks it stale.

        Returns:
            Mapping of account id to the error it hit, or None on success
        """
        ids = list(account_ids) if account_ids is not None else list(self.accounts)
        targets = [self.get_account(i) for i in ids]

        results = await asyncio.gather(
            *(self.adapter(a.chain).get_balance(a.address) for a in targets),
            return_exceptions=True,
        )

        outcome: dict[str, Optional[WalletError]] = {}
        now = _now()
        for account, result in zip(targets, results):
            if account.id not in self.accounts:
                continue  # removed while fetching
            if isinstance(result, WalletError):
                logger.warning(f"Balance refresh failed for {account.address} on {account.chain.value}: {result}")
                if account.balance_status == BalanceStatus.LIVE:
                    account.balance_status = BalanceStatus.STALE
                outcome[account.id] = result
                continue
            if isinstance(result, BaseException):
                raise result
            account.balance = result
            account.balance_status = BalanceStatus.LIVE
            account.balance_updated_at = now
            self._apply_price(account)
            outcome[account.id] = None

        return outcome

    async def refresh_prices(self) -> dict[str, TokenPrice]:
        """Update USD prices for every symbol held and recompute USD balances.

        When the provider fails, cached prices are kept but flagged not live.
        """
        if self.price_provider is None:
            return {}
        symbols = {a.symbol for a in self.accounts.values()}
        if not symbols:
            return {}
        try:
            prices = await self.price_provider.get_prices(symbols)
        except RemoteError as e:
            logger.warning(f"Price refresh failed: {e}")
            prices = {}
            self.prices = {s: replace(p, is_live=False) for s, p in self.prices.items()}
        self.prices.update(prices)
        for account in self.accounts.values():
            self._apply_price(account)
        return prices

    @property
    def total_balance_usd(self) -> Decimal:
        return sum(
            (a.balance_usd for a in self.accounts.values() if a.balance_usd is not None),
            Decimal("0"),
        )

    # Persistence
    def to_dict(self) -> dict:
        return {
            "version": STATE_VERSION,
            "accounts": [a.to_dict() for a in self.accounts.values()],
            "transactions": [tx.to_dict() for tx in self.transactions],
            "selected_account_id": self.selected_account_id,
        }

    def load_dict(self, data: dict) -> None:
        accounts = [ChainAccount.from_dict(a) for a in data.get("accounts", [])]
        self.accounts = {a.id: a for a in accounts}
        self.transactions = [Transaction.from_dict(tx) for tx in data.get("transactions", [])]
        selected = data.get("selected_account_id")
        self.selected_account_id = selected if selected in self.accounts else next(iter(self.accounts), None)

    async def save(self, session: VaultSession) -> None:
        """Encrypt and persist accounts and transactions."""
        await session.put_record(STATE_RECORD, json.dumps(self.to_dict()).encode())
        logger.debug(f"Saved {len(self.accounts)} accounts and {len(self.transactions)} transactions")

    async def load(self, session: VaultSession) -> bool:
        """Load persisted state. Returns False if nothing was saved yet."""
        data = await session.get_record(STATE_RECORD)
        if data is None:
            return False
        self.load_dict(json.loads(data))
        logger.info(f"Loaded {len(self.accounts)} accounts and {len(self.transactions)} transactions")
        return True

    def reset(self) -> None:
        self.accounts.clear()
        self.transactions.clear()
        self.prices.clear()
        self.selected_account_id = None
