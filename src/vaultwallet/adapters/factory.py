"""Chain adapter factory."""

import logging
from typing import Optional, Union

import httpx

from vaultwallet.adapters.base import ChainAdapter
from vaultwallet.adapters.bitcoin import BitcoinAdapter
from vaultwallet.adapters.evm import EVMAdapter
from vaultwallet.adapters.solana import SolanaAdapter
from vaultwallet.chains import Chain, ChainFamily, get_chain_config, parse_chain
from vaultwallet.config import get_settings

logger = logging.getLogger(__name__)

ADAPTER_CLASSES: dict[ChainFamily, type[ChainAdapter]] = {
    ChainFamily.EVM: EVMAdapter,
    ChainFamily.UTXO: BitcoinAdapter,
    ChainFamily.SOLANA: SolanaAdapter,
}

# Cache for adapter instances
_adapter_cache: dict[Chain, ChainAdapter] = {}


def get_chain_adapter(
    chain: Union[Chain, str],
    client: Optional[httpx.AsyncClient] = None,
) -> ChainAdapter:
    """Get the adapter for a chain.

    Adapters built with an injected client are not cached.

    Raises:
        UnsupportedChain: If chain is not in the registry
    """
    chain = parse_chain(chain)
    if client is None and chain in _adapter_cache:
        return _adapter_cache[chain]

    config = get_chain_config(chain)
    endpoint = get_settings().get_rpc_url(chain.value)
    adapter = ADAPTER_CLASSES[config.family](config, endpoint, client=client)

    if client is None:
        _adapter_cache[chain] = adapter
        logger.debug(f"Created {type(adapter).__name__} for {chain.value} at {endpoint}")
    return adapter


def reset_adapter_cache() -> None:
    """Clear adapter cache (useful for testing)."""
    _adapter_cache.clear()
