"""CoinGecko USD price provider."""

import logging
import time
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

import httpx

from vaultwallet.chains import get_coingecko_id
from vaultwallet.config import get_settings
from vaultwallet.quotes.base import PriceProvider, TokenPrice

logger = logging.getLogger(__name__)


class CoinGeckoPriceProvider(PriceProvider):
    """Fetches prices from CoinGecko's /simple/price endpoint.

    Prices younger than the cache TTL are served without a request. When a
    request fails, the last known prices are returned with is_live=False.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache_ttl: Optional[int] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.coingecko_api_url).rstrip("/")
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.price_cache_ttl
        self.timeout = settings.http_timeout
        self._client = client
        self._price_cache: dict[str, TokenPrice] = {}

    async def _fetch(self, ids: dict[str, str]) -> dict:
        params = {
            "ids": ",".join(sorted(set(ids.values()))),
            "vs_currencies": "usd",
            "include_24hr_change": "true",
        }
        url = f"{self.base_url}/simple/price"
        if self._client is not None:
            response = await self._client.get(url, params=params)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def get_prices(self, symbols: Iterable[str]) -> dict[str, TokenPrice]:
        wanted = [s.upper() for s in symbols]
        ids = {s: get_coingecko_id(s) for s in wanted}
        ids = {s: cid for s, cid in ids.items() if cid}

        now = time.time()
        fresh = {
            s: self._price_cache[s]
            for s in ids
            if s in self._price_cache and now - self._price_cache[s].fetched_at < self.cache_ttl
        }
        missing = {s: cid for s, cid in ids.items() if s not in fresh}
        if not missing:
            return fresh

        try:
            data = await self._fetch(missing)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"CoinGecko price fetch failed: {e}")
            stale = {
                s: replace(self._price_cache[s], is_live=False)
                for s in missing
                if s in self._price_cache
            }
            return {**stale, **fresh}

        prices = dict(fresh)
        for symbol, coingecko_id in missing.items():
            entry = data.get(coingecko_id) if isinstance(data, dict) else None
            if not isinstance(entry, dict) or entry.get("usd") is None:
                if symbol in self._price_cache:
                    prices[symbol] = replace(self._price_cache[symbol], is_live=False)
                continue
            try:
                change = entry.get("usd_24h_change")
                price = TokenPrice(
                    symbol=symbol,
                    price_usd=Decimal(str(entry["usd"])),
                    change_24h=Decimal(str(change)) if change is not None else None,
                    fetched_at=now,
                )
            except InvalidOperation:
                logger.warning(f"CoinGecko returned malformed price for {symbol}: {entry}")
                continue
            self._price_cache[symbol] = price
            prices[symbol] = price

        return prices
