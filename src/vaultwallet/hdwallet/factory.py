"""HD derivation factory.

Maps each chain to its family's deriver and exposes the derivation
operations used by the rest of the wallet.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Union

from vaultwallet.chains import Chain, ChainFamily, get_chain_config, parse_chain
from vaultwallet.hdwallet.base import HDDeriver, KeyMaterial
from vaultwallet.hdwallet.btc import BTCDeriver
from vaultwallet.hdwallet.evm import EVMDeriver
from vaultwallet.hdwallet.solana import SolanaDeriver
from vaultwallet.mnemonic import mnemonic_to_seed

logger = logging.getLogger(__name__)

# Family to deriver class mapping
DERIVER_CLASSES: dict[ChainFamily, type[HDDeriver]] = {
    ChainFamily.EVM: EVMDeriver,
    ChainFamily.UTXO: BTCDeriver,
    ChainFamily.SOLANA: SolanaDeriver,
}

# Cache for deriver instances
_deriver_cache: dict[Chain, HDDeriver] = {}


def get_deriver(chain: Union[Chain, str]) -> HDDeriver:
    """Get the deriver for a chain.

    Raises:
        UnsupportedChain: If chain is not in the registry
    """
    chain = parse_chain(chain)
    if chain in _deriver_cache:
        return _deriver_cache[chain]

    config = get_chain_config(chain)
    deriver = DERIVER_CLASSES[config.family](config)
    _deriver_cache[chain] = deriver
    return deriver


def derive_path(chain: Union[Chain, str], index: int) -> str:
    """Get the derivation path for a chain and account index."""
    return get_deriver(chain).get_derivation_path(index)


def derive_key(mnemonic: str, chain: Union[Chain, str], index: int) -> KeyMaterial:
    """Derive the key pair for (mnemonic, chain, index).

    Raises:
        InvalidMnemonic: If the mnemonic fails validation
        UnsupportedChain: If chain is not in the registry
        ValueError: If index is negative or out of range
    """
    deriver = get_deriver(chain)
    deriver.check_index(index)
    seed = mnemonic_to_seed(mnemonic)
    return deriver.derive_key(seed, index)


def derive_address(key_material: KeyMaterial, chain: Union[Chain, str]) -> str:
    """Encode a derived public key as an address on chain.

    Only the public key is read, so this also works after wipe().
    """
    deriver = get_deriver(chain)
    if get_chain_config(key_material.chain).family != deriver.config.family:
        raise ValueError(
            f"Key derived for {key_material.chain.value} cannot produce a {deriver.chain.value} address"
        )
    return deriver.encode_address(key_material.public_key)


@contextmanager
def derived_key(mnemonic: str, chain: Union[Chain, str], index: int) -> Iterator[KeyMaterial]:
    """Derive a key and wipe it on every exit path.

    Example:
        with derived_key(mnemonic, Chain.ETHEREUM, 0) as key:
            signed = adapter.sign_transfer(unsigned, key)
    """
    key = derive_key(mnemonic, chain, index)
    try:
        yield key
    finally:
        key.wipe()


def derive_account_address(mnemonic: str, chain: Union[Chain, str], index: int) -> str:
    """Derive only the address for an account index."""
    with derived_key(mnemonic, chain, index) as key:
        address = derive_address(key, chain)
    logger.debug(f"Derived {parse_chain(chain).value} address at {derive_path(chain, index)}")
    return address


def reset_deriver_cache() -> None:
    """Clear deriver cache (useful for testing)."""
    _deriver_cache.clear()
