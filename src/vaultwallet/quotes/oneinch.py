"""1inch DEX aggregator quotes.

Quotes native and stablecoin swaps on the supported EVM chains.
API docs: https://portal.1inch.dev/documentation/apis/swap/introduction
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from vaultwallet.chains import Chain, ChainFamily, get_chain_config
from vaultwallet.config import get_settings
from vaultwallet.errors import QuoteUnavailable, UnsupportedChain
from vaultwallet.quotes.base import QuoteProvider, SwapQuote

logger = logging.getLogger(__name__)

NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

# (contract address, decimals) by chain and symbol
TOKENS: dict[Chain, dict[str, tuple[str, int]]] = {
    Chain.ETHEREUM: {
        "ETH": (NATIVE_TOKEN, 18),
        "USDT": ("0xdAC17F958D2ee523a2206206994597C13D831ec7", 6),
        "USDC": ("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6),
        "DAI": ("0x6B175474E89094C44Da98b954EedeAC495271d0F", 18),
    },
    Chain.POLYGON: {
        "MATIC": (NATIVE_TOKEN, 18),
        "USDT": ("0xc2132D05D31c914a87C6611C10748AEb04B58e8F", 6),
        "USDC": ("0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", 6),
    },
    Chain.BNB: {
        "BNB": (NATIVE_TOKEN, 18),
        "USDT": ("0x55d398326f99059fF775485246999027B3197955", 18),
        "USDC": ("0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", 18),
    },
}


class OneInchQuoteProvider(QuoteProvider):
    """1inch aggregation protocol quotes (no execution)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.oneinch_api_key
        self.base_url = (base_url or settings.oneinch_api_url).rstrip("/")
        self.default_slippage = Decimal(str(settings.default_slippage_percent))
        self.timeout = settings.http_timeout
        self._client = client

    @property
    def name(self) -> str:
        return "1inch"

    def supports_pair(self, chain: Chain, from_asset: str, to_asset: str) -> bool:
        tokens = TOKENS.get(chain, {})
        return from_asset.upper() in tokens and to_asset.upper() in tokens

    def _get_headers(self) -> dict:
        """Get API headers with authorization."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, url: str, params: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, headers=self._get_headers(), params=params)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, headers=self._get_headers(), params=params)

    async def get_quote(
        self,
        chain: Chain,
        from_asset: str,
        to_asset: str,
        amount: Decimal,
        slippage_percent: Optional[Decimal] = None,
    ) -> SwapQuote:
        """Get a quote for swapping amount of from_asset into to_asset."""
        config = get_chain_config(chain)
        if config.family != ChainFamily.EVM or config.chain not in TOKENS:
            raise UnsupportedChain(chain)
        if amount <= 0:
            raise ValueError("Swap amount must be positive")
        if not self.supports_pair(config.chain, from_asset, to_asset):
            raise QuoteUnavailable(f"Pair {from_asset}->{to_asset} not supported on {config.chain.value}")

        tokens = TOKENS[config.chain]
        src, src_decimals = tokens[from_asset.upper()]
        dst, dst_decimals = tokens[to_asset.upper()]
        slippage = slippage_percent if slippage_percent is not None else self.default_slippage

        try:
            response = await self._request(
                f"{self.base_url}/{config.chain_id}/quote",
                params={
                    "src": src,
                    "dst": dst,
                    "amount": str(int(amount.scaleb(src_decimals))),
                    "includeGas": "true",
                },
            )
        except httpx.HTTPError as e:
            logger.warning(f"1inch quote request failed: {e}")
            raise QuoteUnavailable("1inch request failed", str(e)) from e

        if response.status_code != 200:
            logger.warning(f"1inch API error: {response.status_code} - {response.text}")
            raise QuoteUnavailable(f"1inch API error {response.status_code}", response.text)

        try:
            data = response.json()
            to_amount = Decimal(int(data["toAmount"])).scaleb(-dst_decimals)
            impact = data.get("estimatedPriceImpact")
            gas = data.get("gas") or data.get("estimatedGas")
            return SwapQuote(
                provider=f"{self.name} ({config.chain.value})",
                chain=config.chain,
                from_asset=from_asset.upper(),
                to_asset=to_asset.upper(),
                from_amount=amount,
                to_amount=to_amount,
                slippage_percent=slippage,
                price_impact_percent=Decimal(str(impact)) * 100 if impact is not None else None,
                gas_estimate=int(gas) if gas is not None else None,
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise QuoteUnavailable("Malformed 1inch response", str(e)) from e
