"""Transfer pipeline: draft, validate, estimate fee, sign, broadcast.

State flow:
    DRAFT -> VALIDATED -> FEE_ESTIMATED -> SIGNED -> BROADCAST -> CONFIRMED | FAILED

Validation is purely local and runs before any network or key operation.
A rejected broadcast sends the draft back to DRAFT with its signed payload
discarded. An uncertain broadcast is recorded as pending with the locally
computed hash and is never re-sent automatically.
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from vaultwallet.adapters import FeeEstimate, SignedTransaction, TransactionStatus
from vaultwallet.chains import get_chain_config
from vaultwallet.errors import (
    BalanceUnavailable,
    BroadcastError,
    BroadcastUncertain,
    FeeUnavailable,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    RemoteError,
    TransferStateError,
    VaultLocked,
    WatchOnlyAccount,
)
from vaultwallet.hdwallet import derived_key
from vaultwallet.quotes.base import PriceProvider
from vaultwallet.services.wallet_state import (
    BalanceStatus,
    ChainAccount,
    Transaction,
    TransactionKind,
    WalletState,
)
from vaultwallet.vault import VaultSession

logger = logging.getLogger(__name__)


class TransferState(str, Enum):
    DRAFT = "draft"
    VALIDATED = "validated"
    FEE_ESTIMATED = "fee_estimated"
    SIGNED = "signed"
    BROADCAST = "broadcast"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class TransferDraft:
    """A send in progress."""

    account: ChainAccount
    to_address: str
    amount: Decimal
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: TransferState = TransferState.DRAFT
    fee: Optional[FeeEstimate] = None
    fee_unavailable: bool = False
    signed: Optional[SignedTransaction] = field(default=None, repr=False)
    transaction: Optional[Transaction] = None
    last_error: Optional[str] = None

    @property
    def tx_hash(self) -> Optional[str]:
        return self.transaction.hash if self.transaction else None


def _to_decimal(amount: Union[Decimal, str, int]) -> Decimal:
    if isinstance(amount, float):
        # Binary floats cannot represent most chain amounts exactly
        raise InvalidAmount("Amounts must be Decimal, str or int, not float")
    try:
        return Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Not a number: {amount!r}") from None


class TransferPipeline:
    """Drives TransferDrafts through validation, fee, signing and broadcast."""

    def __init__(self, state: WalletState, price_provider: Optional[PriceProvider] = None):
        self.state = state
        self.price_provider = price_provider if price_provider is not None else state.price_provider

    def create_draft(
        self,
        account_id: str,
        to_address: str,
        amount: Union[Decimal, str, int],
    ) -> TransferDraft:
        """Start a transfer from one of the wallet's accounts."""
        account = self.state.get_account(account_id)
        return TransferDraft(account=account, to_address=to_address.strip(), amount=_to_decimal(amount))

    @staticmethod
    def _require_state(draft: TransferDraft, *allowed: TransferState) -> None:
        if draft.state not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise TransferStateError(f"Transfer is {draft.state.value}, expected {expected}")

    def validate(self, draft: TransferDraft) -> TransferDraft:
        """Check the draft locally.

        Raises:
            WatchOnlyAccount: If the sending account has no key
            InvalidAddress: If the recipient is malformed for the chain
            InvalidAmount: If the amount is not positive or too precise
            BalanceUnavailable: If the balance has never been fetched
            InsufficientBalance: If the amount exceeds the cached balance
        """
        self._require_state(draft, TransferState.DRAFT, TransferState.VALIDATED)
        account = draft.account
        config = get_chain_config(account.chain)

        if account.is_watch_only:
            raise WatchOnlyAccount(f"Account {account.name} is watch-only")
        if not self.state.adapter(account.chain).validate_address(draft.to_address):
            raise InvalidAddress(draft.to_address, account.chain.value)
        if not draft.amount.is_finite() or draft.amount <= 0:
            raise InvalidAmount(f"Amount must be positive, got {draft.amount}")
        if -draft.amount.normalize().as_tuple().exponent > config.decimals:
            raise InvalidAmount(f"{config.symbol} supports at most {config.decimals} decimal places")
        if account.balance_status == BalanceStatus.UNKNOWN:
            raise BalanceUnavailable(f"Balance of {account.name} has not been fetched yet")
        if draft.amount > account.balance:
            raise InsufficientBalance(draft.amount, account.balance)

        draft.state = TransferState.VALIDATED
        draft.last_error = None
        return draft

    async def estimate_fee(self, draft: TransferDraft, accept_unknown_fee: bool = False) -> TransferDraft:
        """Attach a fee estimate to a validated draft.

        Args:
            accept_unknown_fee: Continue without a fee when it cannot be
                fetched; the draft is then flagged fee_unavailable

        Raises:
            FeeUnavailable: If the fee could not be fetched and
                accept_unknown_fee is False
        """
        self._require_state(draft, TransferState.VALIDATED, TransferState.FEE_ESTIMATED)
        account = draft.account
        adapter = self.state.adapter(account.chain)

        try:
            fee = await adapter.estimate_fee(account.address, draft.to_address, draft.amount)
        except FeeUnavailable as e:
            draft.last_error = str(e)
            if not accept_unknown_fee:
                raise
            logger.warning(f"Proceeding without fee estimate for transfer {draft.id}: {e}")
            draft.fee = None
            draft.fee_unavailable = True
            draft.state = TransferState.FEE_ESTIMATED
            return draft

        await self._apply_fee_price(fee)
        draft.fee = fee
        draft.fee_unavailable = False
        draft.state = TransferState.FEE_ESTIMATED
        return draft

    async def _apply_fee_price(self, fee: FeeEstimate) -> None:
        """Price the fee in USD. A failed lookup leaves fee_usd as None."""
        fee.fee_usd = None
        fee.fee_usd_is_live = False
        if self.price_provider is None:
            return
        try:
            price = await self.price_provider.get_price(fee.symbol)
        except RemoteError as e:
            logger.warning(f"No {fee.symbol} price for fee estimate: {e}")
            return
        if price is not None:
            fee.fee_usd = fee.fee * price.price_usd
            fee.fee_usd_is_live = price.is_live

    async def sign(self, draft: TransferDraft, session: VaultSession) -> TransferDraft:
        """Build the transfer from network state and sign it.

        The key is derived and wiped inside the mnemonic lease with no
        await in between.
        """
        self._require_state(draft, TransferState.FEE_ESTIMATED)
        if session.is_locked:
            raise VaultLocked("Vault session is locked")
        account = draft.account
        adapter = self.state.adapter(account.chain)

        unsigned = await adapter.build_transfer(
            account.address, draft.to_address, draft.amount, draft.fee
        )

        async with session.lease_mnemonic("sign_transfer") as mnemonic:
            with derived_key(mnemonic, account.chain, account.derivation_index) as key:
                signed = adapter.sign_transfer(unsigned, key)

        if unsigned.fee is not None:
            draft.fee = unsigned.fee
        draft.signed = signed
        draft.state = TransferState.SIGNED
        logger.info(f"Signed {account.chain.value} transfer {draft.id} ({signed.tx_hash})")
        return draft

    def _record(self, draft: TransferDraft, tx_hash: str, broadcast_confirmed: bool) -> Transaction:
        account = draft.account
        tx = Transaction(
            hash=tx_hash,
            chain=account.chain,
            from_address=account.address,
            to_address=draft.to_address,
            amount=draft.amount,
            symbol=account.symbol,
            kind=TransactionKind.SEND,
            status=TransactionStatus.PENDING,
            fee=draft.fee.fee if draft.fee else None,
            fee_usd=draft.fee.fee_usd if draft.fee else None,
            fee_usd_is_live=draft.fee.fee_usd_is_live if draft.fee else False,
            broadcast_confirmed=broadcast_confirmed,
        )
        self.state.add_transaction(tx)
        draft.transaction = tx
        draft.signed = None
        draft.state = TransferState.BROADCAST
        return tx

    async def broadcast(self, draft: TransferDraft) -> Transaction:
        """Submit the signed transaction and record it as pending.

        Raises:
            BroadcastError: If the network rejected it; the draft is back in DRAFT
        """
        self._require_state(draft, TransferState.SIGNED)
        adapter = self.state.adapter(draft.account.chain)

        try:
            tx_hash = await adapter.broadcast(draft.signed)
        except BroadcastError as e:
            logger.error(f"Transfer {draft.id} rejected: {e}")
            draft.signed = None
            draft.fee = None
            draft.fee_unavailable = False
            draft.last_error = str(e)
            draft.state = TransferState.DRAFT
            raise
        except BroadcastUncertain as e:
            logger.warning(f"Transfer {draft.id} broadcast uncertain, tracking {e.tx_hash}")
            draft.last_error = str(e)
            return self._record(draft, e.tx_hash, broadcast_confirmed=False)

        return self._record(draft, tx_hash, broadcast_confirmed=True)

    async def send(
        self,
        account_id: str,
        to_address: str,
        amount: Union[Decimal, str, int],
        session: VaultSession,
        accept_unknown_fee: bool = False,
    ) -> Transaction:
        """Run a transfer through every step."""
        draft = self.create_draft(account_id, to_address, amount)
        self.validate(draft)
        await self.estimate_fee(draft, accept_unknown_fee=accept_unknown_fee)
        await self.sign(draft, session)
        return await self.broadcast(draft)

    async def refresh(self, draft: TransferDraft) -> TransferDraft:
        """Move a broadcast draft to CONFIRMED or FAILED once the chain settles."""
        self._require_state(draft, TransferState.BROADCAST)
        tx = draft.transaction
        if tx.status == TransactionStatus.PENDING:
            status = await self.state.adapter(tx.chain).get_status(tx.hash)
            if status != TransactionStatus.PENDING:
                self.state.update_transaction_status(tx.id, status)

        if tx.status == TransactionStatus.CONFIRMED:
            draft.state = TransferState.CONFIRMED
        elif tx.status == TransactionStatus.FAILED:
            draft.state = TransferState.FAILED
        return draft
