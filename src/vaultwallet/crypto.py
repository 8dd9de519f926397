"""Cryptographic utilities for secret storage at rest.

Uses Fernet (AES-128-CBC with HMAC-SHA256) for authenticated symmetric
encryption, keyed from a user credential with PBKDF2-HMAC-SHA256 and a
random per-secret salt. There is no built-in or default key.
"""

import base64
import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from vaultwallet.config import get_settings
from vaultwallet.errors import DecryptionError

logger = logging.getLogger(__name__)

SALT_BYTES = 16


@dataclass(frozen=True)
class SessionKey:
    """A credential-derived encryption key together with the salt that produced it."""

    key: bytes = field(repr=False)  # urlsafe-base64 Fernet key
    salt: bytes


@dataclass(frozen=True)
class EncryptedSecret:
    """Ciphertext plus the salt needed to re-derive its key."""

    ciphertext: bytes
    salt: bytes
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_bytes(self) -> bytes:
        """Serialize to a JSON envelope for the persistence layer."""
        return json.dumps(
            {
                "ciphertext": self.ciphertext.decode(),
                "salt": base64.b64encode(self.salt).decode(),
                "created_at": self.created_at.isoformat(),
            }
        ).encode()

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedSecret":
        """Parse a JSON envelope produced by to_bytes()."""
        try:
            payload = json.loads(data)
            return cls(
                ciphertext=payload["ciphertext"].encode(),
                salt=base64.b64decode(payload["salt"]),
                created_at=datetime.fromisoformat(payload["created_at"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise DecryptionError(f"Malformed encrypted secret envelope: {e}") from e


def derive_key_from_password(
    password: Union[str, bytes],
    salt: Optional[bytes] = None,
    iterations: Optional[int] = None,
) -> SessionKey:
    """Derive a Fernet key from a credential using PBKDF2.

    Args:
        password: User-provided credential
        salt: Optional salt (generated if not provided)
        iterations: PBKDF2 rounds (defaults to settings.kdf_iterations)

    Returns:
        SessionKey holding the base64-encoded key and its salt
    """
    if not password:
        raise ValueError("A non-empty credential is required")
    if salt is None:
        salt = os.urandom(SALT_BYTES)
    if iterations is None:
        iterations = get_settings().kdf_iterations

    if isinstance(password, str):
        password = password.encode()

    key = hashlib.pbkdf2_hmac(
        "sha256",
        password,
        salt,
        iterations,
        dklen=32,
    )

    # Fernet requires base64-encoded key
    return SessionKey(key=base64.urlsafe_b64encode(key), salt=salt)


class SecretCipher:
    """Encrypts and decrypts secrets under credential-derived keys.

    Usage:
        cipher = SecretCipher()
        key = cipher.derive_key("correct horse")
        secret = cipher.encrypt(b"seed words", key)
        plaintext = cipher.decrypt(secret, key)
    """

    def __init__(self, iterations: Optional[int] = None):
        self.iterations = iterations

    def derive_key(self, credential: Union[str, bytes], salt: Optional[bytes] = None) -> SessionKey:
        """Derive a key, generating a fresh salt when none is given."""
        return derive_key_from_password(credential, salt, self.iterations)

    def encrypt(self, plaintext: bytes, key: SessionKey) -> EncryptedSecret:
        """Encrypt plaintext; each call uses a fresh IV."""
        token = Fernet(key.key).encrypt(plaintext)
        return EncryptedSecret(ciphertext=token, salt=key.salt)

    def decrypt(self, secret: EncryptedSecret, key: SessionKey) -> bytes:
        """Authenticate and decrypt.

        Raises:
            DecryptionError: If the key is wrong or the ciphertext was altered
        """
        try:
            return Fernet(key.key).decrypt(secret.ciphertext)
        except InvalidToken:
            raise DecryptionError("Secret could not be decrypted with the supplied key") from None

    def decrypt_with_credential(self, secret: EncryptedSecret, credential: Union[str, bytes]) -> tuple[bytes, SessionKey]:
        """Re-derive the key from the stored salt and decrypt."""
        key = self.derive_key(credential, secret.salt)
        return self.decrypt(secret, key), key

    def rotate_key(self, secret: EncryptedSecret, old_key: SessionKey, new_key: SessionKey) -> EncryptedSecret:
        """Re-encrypt a secret under a new key.

        Args:
            secret: Currently encrypted secret
            old_key: Current encryption key
            new_key: New encryption key

        Returns:
            Secret re-encrypted with the new key
        """
        plaintext = self.decrypt(secret, old_key)
        return self.encrypt(plaintext, new_key)
