"""BIP-39 mnemonic generation and validation."""

import logging
import secrets
from typing import Sequence, Union

from bip_utils import (
    Bip39Languages,
    Bip39MnemonicGenerator,
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
)

from vaultwallet.errors import InvalidMnemonic

logger = logging.getLogger(__name__)

GENERATED_WORD_COUNT = 24
ENTROPY_BYTES = 32  # 256 bits -> 24 words
VALID_WORD_COUNTS = (12, 15, 18, 21, 24)


def normalize_mnemonic(candidate: Union[str, Sequence[str]]) -> str:
    """Collapse whitespace and lowercase a phrase or word list."""
    words = candidate.split() if isinstance(candidate, str) else list(candidate)
    return " ".join(word.strip().lower() for word in words)


def generate_mnemonic() -> str:
    """Generate a fresh 24-word English mnemonic from 256 bits of OS entropy."""
    entropy = secrets.token_bytes(ENTROPY_BYTES)
    mnemonic = Bip39MnemonicGenerator(Bip39Languages.ENGLISH).FromEntropy(entropy)
    phrase = mnemonic.ToStr()
    logger.debug(f"Generated new {GENERATED_WORD_COUNT}-word mnemonic")
    return phrase


def validate_mnemonic(candidate: Union[str, Sequence[str]]) -> bool:
    """Check word count, wordlist membership and checksum.

    Never raises for malformed input.
    """
    phrase = normalize_mnemonic(candidate)
    if len(phrase.split()) not in VALID_WORD_COUNTS:
        return False
    return Bip39MnemonicValidator(Bip39Languages.ENGLISH).IsValid(phrase)


def require_valid_mnemonic(candidate: Union[str, Sequence[str]]) -> str:
    """Return the normalized phrase or raise InvalidMnemonic."""
    phrase = normalize_mnemonic(candidate)
    if not validate_mnemonic(phrase):
        raise InvalidMnemonic("Mnemonic failed word count, wordlist or checksum validation")
    return phrase


def mnemonic_to_seed(candidate: Union[str, Sequence[str]], passphrase: str = "") -> bytes:
    """Derive the 64-byte BIP-39 seed for a validated mnemonic."""
    phrase = require_valid_mnemonic(candidate)
    return bytes(Bip39SeedGenerator(phrase, Bip39Languages.ENGLISH).Generate(passphrase))
