"""Application configuration using pydantic-settings.

Endpoints for every supported chain, price/quote providers, key-derivation
cost and local storage are read from the environment (or a .env file).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Storage
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/vaultwallet.db",
        description="Database connection URL for the encrypted key-value store",
    )

    # ======================
    # Chain RPC Endpoints
    # ======================
    # EVM Chains
    eth_rpc_url: str = Field(
        default="https://eth.llamarpc.com", description="Ethereum RPC URL"
    )
    polygon_rpc_url: str = Field(
        default="https://polygon.llamarpc.com", description="Polygon RPC URL"
    )
    bsc_rpc_url: str = Field(
        default="https://bsc-dataseed.binance.org", description="BNB Chain RPC URL"
    )

    # Non-EVM Chains
    sol_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    btc_api_url: str = Field(
        default="https://blockstream.info/api", description="Esplora REST API for Bitcoin"
    )
    btc_fee_api_url: str = Field(
        default="https://mempool.space/api", description="mempool.space API for fee rates"
    )

    # ======================
    # Prices & Quotes
    # ======================
    coingecko_api_url: str = Field(
        default="https://api.coingecko.com/api/v3", description="CoinGecko API URL"
    )
    oneinch_api_url: str = Field(
        default="https://api.1inch.dev/swap/v5.2", description="1inch swap API URL"
    )
    oneinch_api_key: str = Field(default="", description="1inch API key")
    default_slippage_percent: float = Field(
        default=0.5, description="Default swap slippage tolerance in percent"
    )
    price_cache_ttl: int = Field(
        default=60, description="Seconds a fetched price is considered live"
    )

    # ======================
    # Network
    # ======================
    http_timeout: float = Field(default=30.0, description="Timeout for remote calls in seconds")

    # ======================
    # Security
    # ======================
    kdf_iterations: int = Field(
        default=600_000, description="PBKDF2-HMAC-SHA256 iterations for credential keys"
    )
    secret_lock_timeout: float = Field(
        default=30.0, description="Maximum seconds to wait for exclusive secret access"
    )

    def get_rpc_url(self, chain: str) -> str:
        """Get RPC URL for a specific chain."""
        rpc_map = {
            "ethereum": self.eth_rpc_url,
            "polygon": self.polygon_rpc_url,
            "bnb": self.bsc_rpc_url,
            "solana": self.sol_rpc_url,
            "bitcoin": self.btc_api_url,
        }
        return rpc_map.get(chain.lower(), "")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "database_url": self._redact_url(self.database_url),
            "chains": {
                "ethereum": {"rpc": self.eth_rpc_url},
                "polygon": {"rpc": self.polygon_rpc_url},
                "bnb": {"rpc": self.bsc_rpc_url},
                "solana": {"rpc": self.sol_rpc_url},
                "bitcoin": {"api": self.btc_api_url, "fees": self.btc_fee_api_url},
            },
            "quotes": {
                "coingecko": self.coingecko_api_url,
                "oneinch": self.oneinch_api_url,
                "oneinch_api_key": "***" if self.oneinch_api_key else "(not set)",
                "slippage_percent": self.default_slippage_percent,
            },
            "kdf_iterations": self.kdf_iterations,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
