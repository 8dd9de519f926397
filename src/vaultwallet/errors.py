"""Exception hierarchy for wallet operations.

Every failure surfaced by the wallet core derives from ``WalletError``.
Errors caused by an unreachable or misbehaving remote provider are marked
``retryable`` so callers can offer a retry instead of a hard failure.
"""

from typing import Optional


class WalletError(Exception):
    """Base class for all wallet errors."""

    retryable: bool = False


class InvalidMnemonic(WalletError):
    """Mnemonic has a bad word count, unknown word, or checksum mismatch."""


class DecryptionError(WalletError):
    """Ciphertext could not be authenticated with the supplied key."""


class UnsupportedChain(WalletError):
    """Chain identifier is not in the registry."""

    def __init__(self, chain: object):
        self.chain = chain
        super().__init__(f"Unsupported chain: {chain}")


class InvalidAddress(WalletError):
    """Address is malformed for the target chain."""

    def __init__(self, address: str, chain: object):
        self.address = address
        self.chain = chain
        super().__init__(f"Invalid {chain} address: {address}")


class InsufficientBalance(WalletError):
    """Requested amount exceeds the known balance."""

    def __init__(self, requested, available):
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient balance: requested {requested}, available {available}")


class InvalidAmount(WalletError):
    """Amount is not positive or is finer than the chain's smallest unit."""


class TransferStateError(WalletError):
    """A transfer or transaction step was attempted from the wrong state."""


class WatchOnlyAccount(WalletError):
    """Operation needs a signing key but the account is watch-only."""


class AccountNotFound(WalletError):
    """No account with the given id."""


class UserNotVerified(WalletError):
    """User verification (biometric or credential prompt) did not succeed."""


class VaultLocked(WalletError):
    """The vault session was locked before the operation completed."""


class VaultNotInitialized(WalletError):
    """No encrypted secret has been stored yet."""


class VaultAlreadyInitialized(WalletError):
    """A secret is already stored and overwrite was not requested."""


class RemoteError(WalletError):
    """A remote provider call failed."""

    retryable = True

    def __init__(self, message: str, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(message if detail is None else f"{message}: {detail}")


class BalanceUnavailable(RemoteError):
    """Balance could not be fetched."""


class FeeUnavailable(RemoteError):
    """Fee rate or cost could not be fetched."""


class StatusUnknown(RemoteError):
    """Transaction status could not be fetched."""


class QuoteUnavailable(RemoteError):
    """Swap quote or price could not be fetched."""


class BroadcastError(WalletError):
    """The network rejected the transaction."""

    def __init__(self, message: str, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(message if detail is None else f"{message}: {detail}")


class BroadcastUncertain(RemoteError):
    """Broadcast outcome is unknown because the transport failed.

    The transaction may or may not have reached the network, so the
    locally computed hash is kept for later status polling.
    """

    def __init__(self, message: str, tx_hash: str, detail: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message, detail)


class LockTimeoutError(WalletError):
    """Raised when a lock cannot be acquired within the timeout period."""
