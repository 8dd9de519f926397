"""HD derivation base interface.

This module defines the abstract interface for per-family key derivation.
Each implementation turns a BIP-39 seed into the private/public key pair
at a chain's standard derivation path and encodes the public key as an
address.

Security: private keys only ever live in KeyMaterial, which callers wipe
as soon as signing is done. Nothing here persists or logs key bytes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from vaultwallet.chains import Chain, ChainConfig

MAX_INDEX = 2**31 - 1


@dataclass
class KeyMaterial:
    """A derived key pair. Volatile: never persist, always wipe()."""

    chain: Chain
    path: str
    private_key: bytearray = field(repr=False)
    public_key: bytes

    def wipe(self) -> None:
        """Zero the private key buffer in place."""
        for i in range(len(self.private_key)):
            self.private_key[i] = 0

    @property
    def is_wiped(self) -> bool:
        return not any(self.private_key)

    def private_key_bytes(self) -> bytes:
        """Copy of the private key for a signing call."""
        if self.is_wiped:
            raise ValueError("Key material has been wiped")
        return bytes(self.private_key)


class HDDeriver(ABC):
    """Abstract base class for a chain family's key derivation.

    Derivation is a pure function of (seed, index): the same inputs always
    produce the same key and address.

    Usage:
        deriver = EVMDeriver(get_chain_config("ethereum"))
        key = deriver.derive_key(seed, index=0)
        address = deriver.encode_address(key.public_key)
    """

    def __init__(self, config: ChainConfig):
        self.config = config

    @property
    def chain(self) -> Chain:
        return self.config.chain

    @property
    def purpose(self) -> int:
        """BIP purpose number (44, 84, ...)."""
        return self.config.purpose

    @property
    def coin_type(self) -> int:
        """SLIP-44 coin type number."""
        return self.config.coin_type

    def get_derivation_path(self, index: int) -> str:
        """Get the full derivation path for an index.

        Default format: m/purpose'/coin_type'/0'/0/index
        """
        self.check_index(index)
        return f"m/{self.purpose}'/{self.coin_type}'/0'/0/{index}"

    @staticmethod
    def check_index(index: int) -> None:
        if not isinstance(index, int) or isinstance(index, bool):
            raise ValueError(f"Derivation index must be an integer, got {index!r}")
        if index < 0 or index > MAX_INDEX:
            raise ValueError(f"Derivation index out of range: {index}")

    @abstractmethod
    def derive_key(self, seed: bytes, index: int) -> KeyMaterial:
        """Derive the key pair at the given index.

        Args:
            seed: 64-byte BIP-39 seed
            index: Account/address index (0, 1, 2, ...)

        Returns:
            KeyMaterial for the derived path
        """
        pass

    @abstractmethod
    def encode_address(self, public_key: bytes) -> str:
        """Encode a public key in this chain's address format."""
        pass
