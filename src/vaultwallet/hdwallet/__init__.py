"""HD derivation of per-chain keys and addresses from one mnemonic."""

from vaultwallet.hdwallet.base import HDDeriver, KeyMaterial
from vaultwallet.hdwallet.factory import (
    derive_account_address,
    derive_address,
    derive_key,
    derive_path,
    derived_key,
    get_deriver,
)

__all__ = [
    "HDDeriver",
    "KeyMaterial",
    "derive_account_address",
    "derive_address",
    "derive_key",
    "derive_path",
    "derived_key",
    "get_deriver",
]
