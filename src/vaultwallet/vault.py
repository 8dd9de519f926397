"""Encrypted storage of the wallet mnemonic and wallet records.

Every record lives in the key-value store as an EncryptedSecret envelope.
All records share the salt of the current credential key, so one unlock
gives a session able to read and write all of them, and a credential
change re-encrypts every record under a fresh salt.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

from vaultwallet.config import get_settings
from vaultwallet.crypto import EncryptedSecret, SecretCipher, SessionKey
from vaultwallet.errors import (
    UserNotVerified,
    VaultAlreadyInitialized,
    VaultLocked,
    VaultNotInitialized,
)
from vaultwallet.mnemonic import generate_mnemonic, require_valid_mnemonic
from vaultwallet.storage.base import KeyValueStore
from vaultwallet.utils.locks import SecretLock

logger = logging.getLogger(__name__)

RECORD_PREFIX = "vault."
MNEMONIC_RECORD = "mnemonic"


def _record_key(name: str) -> str:
    return f"{RECORD_PREFIX}{name}"


class WalletVault:
    """Owns the encrypted mnemonic and the records encrypted alongside it.

    Usage:
        vault = WalletVault(MemoryKeyValueStore())
        phrase = await vault.create("credential")
        session = await vault.unlock("credential", user_verified=True)
        async with session.lease_mnemonic() as mnemonic:
            ...
    """

    def __init__(
        self,
        store: KeyValueStore,
        cipher: Optional[SecretCipher] = None,
        lock_timeout: Optional[float] = None,
        lock_name: str = "vault",
    ):
        self.store = store
        self.cipher = cipher or SecretCipher()
        self.lock_timeout = lock_timeout if lock_timeout is not None else get_settings().secret_lock_timeout
        self.lock_name = lock_name

    def secret_lock(self, operation: str) -> SecretLock:
        return SecretLock(self.lock_name, timeout=self.lock_timeout, operation=operation)

    async def is_initialized(self) -> bool:
        return await self.store.get(_record_key(MNEMONIC_RECORD)) is not None

    async def create(self, credential: Union[str, bytes], overwrite: bool = False) -> str:
        """Generate and store a new 24-word mnemonic.

        Returns the phrase once so it can be shown for backup.
        """
        phrase = generate_mnemonic()
        await self._store_mnemonic(phrase, credential, overwrite)
        logger.info("Created new wallet vault")
        return phrase

    async def import_mnemonic(
        self,
        phrase: str,
        credential: Union[str, bytes],
        overwrite: bool = False,
    ) -> None:
        """Validate and store an existing mnemonic.

        Raises:
            InvalidMnemonic: If the phrase fails validation
        """
        phrase = require_valid_mnemonic(phrase)
        await self._store_mnemonic(phrase, credential, overwrite)
        logger.info("Imported wallet mnemonic into vault")

    async def _store_mnemonic(self, phrase: str, credential: Union[str, bytes], overwrite: bool) -> None:
        async with self.secret_lock("store_mnemonic"):
            if not overwrite and await self.is_initialized():
                raise VaultAlreadyInitialized("Vault already holds a mnemonic")
            if overwrite:
                await self._delete_records()
            key = self.cipher.derive_key(credential)
            secret = self.cipher.encrypt(phrase.encode(), key)
            await self.store.set(_record_key(MNEMONIC_RECORD), secret.to_bytes())

    async def _load_secret(self, name: str) -> Optional[EncryptedSecret]:
        data = await self.store.get(_record_key(name))
        return EncryptedSecret.from_bytes(data) if data is not None else None

    async def unlock(self, credential: Union[str, bytes], user_verified: bool = True) -> "VaultSession":
        """Verify the credential and open a session.

        Args:
            credential: User credential
            user_verified: Outcome of the platform's user verification prompt

        Raises:
            UserNotVerified: If user verification failed
            VaultNotInitialized: If no mnemonic is stored
            DecryptionError: If the credential is wrong
        """
        if not user_verified:
            raise UserNotVerified("User verification failed")

        secret = await self._load_secret(MNEMONIC_RECORD)
        if secret is None:
            raise VaultNotInitialized("No wallet has been created or imported")

        # Decrypting proves the credential; the plaintext is discarded
        _, key = self.cipher.decrypt_with_credential(secret, credential)
        logger.info("Vault unlocked")
        return VaultSession(self, key)

    async def change_credential(self, old_credential: Union[str, bytes], new_credential: Union[str, bytes]) -> None:
        """Re-encrypt every record under a key derived from new_credential.

        Every record is re-encrypted before anything is written, then all
        of them are committed together with the mnemonic last. A failed
        commit leaves the vault readable with old_credential.

        Raises:
            DecryptionError: If old_credential is wrong
        """
        async with self.secret_lock("change_credential"):
            secret = await self._load_secret(MNEMONIC_RECORD)
            if secret is None:
                raise VaultNotInitialized("No wallet has been created or imported")

            _, old_key = self.cipher.decrypt_with_credential(secret, old_credential)
            new_key = self.cipher.derive_key(new_credential)

            mnemonic_key = _record_key(MNEMONIC_RECORD)
            rotated: dict[str, bytes] = {}
            for key in await self.store.keys():
                if not key.startswith(RECORD_PREFIX) or key == mnemonic_key:
                    continue
                data = await self.store.get(key)
                if data is None:
                    continue
                record = self.cipher.rotate_key(EncryptedSecret.from_bytes(data), old_key, new_key)
                rotated[key] = record.to_bytes()
            rotated[mnemonic_key] = self.cipher.rotate_key(secret, old_key, new_key).to_bytes()

            await self.store.set_many(rotated)
        logger.info(f"Vault credential changed ({len(rotated)} records re-encrypted)")

    async def _delete_records(self) -> None:
        for key in await self.store.keys():
            if key.startswith(RECORD_PREFIX):
                await self.store.delete(key)

    async def wipe(self) -> None:
        """Delete the mnemonic and every vault record."""
        async with self.secret_lock("wipe"):
            await self._delete_records()
        logger.warning("Vault wiped")


class VaultSession:
    """An unlocked vault.

    Holds only the derived session key. The mnemonic is decrypted on
    demand inside lease_mnemonic() and never cached.
    """

    def __init__(self, vault: WalletVault, key: SessionKey):
        self.vault = vault
        self._key: Optional[SessionKey] = key

    @property
    def is_locked(self) -> bool:
        return self._key is None

    def lock(self) -> None:
        """Forget the session key."""
        self._key = None
        logger.info("Vault session locked")

    def _require_key(self) -> SessionKey:
        if self._key is None:
            raise VaultLocked("Vault session is locked")
        return self._key

    @asynccontextmanager
    async def lease_mnemonic(self, operation: str = "lease_mnemonic") -> AsyncIterator[str]:
        """Decrypt the mnemonic under the secret lock for the duration of the block.

        Callers must not await inside the block while derived keys are alive.
        """
        key = self._require_key()
        async with self.vault.secret_lock(operation):
            secret = await self.vault._load_secret(MNEMONIC_RECORD)
            if secret is None:
                raise VaultNotInitialized("No wallet has been created or imported")
            yield self.vault.cipher.decrypt(secret, key).decode()

    async def put_record(self, name: str, plaintext: bytes) -> None:
        """Encrypt and store a named record.

        Raises:
            VaultLocked: If the session is locked, or its key was replaced
                by a credential change
        """
        if name == MNEMONIC_RECORD:
            raise ValueError("The mnemonic record is managed by the vault")
        key = self._require_key()
        async with self.vault.secret_lock("put_record"):
            current = await self.vault._load_secret(MNEMONIC_RECORD)
            if current is None:
                raise VaultNotInitialized("No wallet has been created or imported")
            if current.salt != key.salt:
                self.lock()
                raise VaultLocked("Vault credential changed, unlock again")
            secret = self.vault.cipher.encrypt(plaintext, key)
            await self.vault.store.set(_record_key(name), secret.to_bytes())

    async def get_record(self, name: str) -> Optional[bytes]:
        """Load and decrypt a named record, or None if absent."""
        key = self._require_key()
        secret = await self.vault._load_secret(name)
        if secret is None:
            return None
        return self.vault.cipher.decrypt(secret, key)

    async def delete_record(self, name: str) -> None:
        await self.vault.store.delete(_record_key(name))
