"""Registry of supported chains.

Supports 5 chains across 3 families:
- EVM: Ethereum, Polygon, BNB Chain (shared m/44'/60' key space)
- UTXO: Bitcoin (BIP84 native SegWit)
- SOLANA: Solana (SLIP-10 ed25519)
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from vaultwallet.errors import UnsupportedChain


class Chain(str, Enum):
    """Supported chain identifiers."""

    ETHEREUM = "ethereum"
    POLYGON = "polygon"
    BNB = "bnb"
    BITCOIN = "bitcoin"
    SOLANA = "solana"


class ChainFamily(str, Enum):
    """Chain families sharing an address format and transaction model."""

    EVM = "evm"
    UTXO = "utxo"
    SOLANA = "solana"


@dataclass(frozen=True)
class ChainConfig:
    """Static configuration for a blockchain."""

    chain: Chain
    name: str
    symbol: str
    family: ChainFamily
    coin_type: int  # SLIP-44
    purpose: int
    decimals: int
    coingecko_id: str
    chain_id: Optional[int] = None  # EVM chains only

    def to_base_units(self, amount: Decimal) -> int:
        """Convert a native amount to integer base units."""
        return int(Decimal(amount).scaleb(self.decimals).to_integral_value())

    def from_base_units(self, value: int) -> Decimal:
        """Convert integer base units to a native amount."""
        return Decimal(value).scaleb(-self.decimals)


# ======================
# Chain Configurations
# ======================

CHAINS: dict[Chain, ChainConfig] = {
    Chain.ETHEREUM: ChainConfig(
        chain=Chain.ETHEREUM,
        name="Ethereum",
        symbol="ETH",
        family=ChainFamily.EVM,
        coin_type=60,
        purpose=44,
        decimals=18,
        coingecko_id="ethereum",
        chain_id=1,
    ),
    Chain.POLYGON: ChainConfig(
        chain=Chain.POLYGON,
        name="Polygon",
        symbol="MATIC",
        family=ChainFamily.EVM,
        coin_type=60,
        purpose=44,
        decimals=18,
        coingecko_id="matic-network",
        chain_id=137,
    ),
    Chain.BNB: ChainConfig(
        chain=Chain.BNB,
        name="BNB Chain",
        symbol="BNB",
        family=ChainFamily.EVM,
        coin_type=60,
        purpose=44,
        decimals=18,
        coingecko_id="binancecoin",
        chain_id=56,
    ),
    Chain.BITCOIN: ChainConfig(
        chain=Chain.BITCOIN,
        name="Bitcoin",
        symbol="BTC",
        family=ChainFamily.UTXO,
        coin_type=0,
        purpose=84,
        decimals=8,
        coingecko_id="bitcoin",
    ),
    Chain.SOLANA: ChainConfig(
        chain=Chain.SOLANA,
        name="Solana",
        symbol="SOL",
        family=ChainFamily.SOLANA,
        coin_type=501,
        purpose=44,
        decimals=9,
        coingecko_id="solana",
    ),
}

# CoinGecko ids for symbols tracked outside the native-asset table
EXTRA_COINGECKO_IDS: dict[str, str] = {
    "USDT": "tether",
}


def parse_chain(chain: Union[Chain, str]) -> Chain:
    """Normalize a chain identifier, raising UnsupportedChain if unknown."""
    if isinstance(chain, Chain):
        return chain
    try:
        return Chain(str(chain).lower())
    except ValueError:
        raise UnsupportedChain(chain) from None


def get_chain_config(chain: Union[Chain, str]) -> ChainConfig:
    """Get configuration for a chain."""
    return CHAINS[parse_chain(chain)]


def get_coingecko_id(symbol: str) -> Optional[str]:
    """Get the CoinGecko id for a symbol."""
    symbol = symbol.upper()
    for config in CHAINS.values():
        if config.symbol == symbol:
            return config.coingecko_id
    return EXTRA_COINGECKO_IDS.get(symbol)
