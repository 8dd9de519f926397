"""Abstract interfaces for price and swap quote providers."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from vaultwallet.chains import Chain
from vaultwallet.errors import QuoteUnavailable

logger = logging.getLogger(__name__)


@dataclass
class TokenPrice:
    """USD price of a token."""

    symbol: str
    price_usd: Decimal
    change_24h: Optional[Decimal] = None
    is_live: bool = True  # False when served from cache after a failed fetch
    fetched_at: float = field(default_factory=time.time)


@dataclass
class SwapQuote:
    """A swap quote from a quote provider."""

    provider: str  # e.g., "1inch (ethereum)"
    chain: Chain
    from_asset: str
    to_asset: str
    from_amount: Decimal
    to_amount: Decimal
    slippage_percent: Decimal
    price_impact_percent: Optional[Decimal] = None
    gas_estimate: Optional[int] = None
    timestamp: float = field(default_factory=time.time)
    ttl_seconds: int = 60

    @property
    def minimum_received(self) -> Decimal:
        """Output amount after the worst accepted slippage."""
        return self.to_amount * (1 - self.slippage_percent / 100)

    @property
    def effective_rate(self) -> Decimal:
        """Get effective exchange rate."""
        if self.from_amount == 0:
            return Decimal("0")
        return self.to_amount / self.from_amount

    @property
    def is_expired(self) -> bool:
        """Check if quote has expired."""
        return time.time() > (self.timestamp + self.ttl_seconds)


class PriceProvider(ABC):
    """Abstract base class for USD price sources."""

    @abstractmethod
    async def get_prices(self, symbols: Iterable[str]) -> dict[str, TokenPrice]:
        """Get prices for symbols.

        Best effort: symbols that cannot be priced are omitted rather than
        given a made-up value.
        """
        pass

    async def get_price(self, symbol: str) -> Optional[TokenPrice]:
        """Get the price for one symbol, or None if unavailable."""
        prices = await self.get_prices([symbol])
        return prices.get(symbol.upper())


class QuoteProvider(ABC):
    """Abstract base class for swap quote providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        pass

    @abstractmethod
    def supports_pair(self, chain: Chain, from_asset: str, to_asset: str) -> bool:
        """Check if this provider can quote the pair on chain."""
        pass

    @abstractmethod
    async def get_quote(
        self,
        chain: Chain,
        from_asset: str,
        to_asset: str,
        amount: Decimal,
        slippage_percent: Optional[Decimal] = None,
    ) -> SwapQuote:
        """Get a swap quote.

        Raises:
            UnsupportedChain: If the chain has no swap support
            QuoteUnavailable: If no quote could be obtained
        """
        pass


class QuoteAggregator:
    """Aggregates quotes from multiple providers to find the best one."""

    def __init__(self, providers: Optional[list[QuoteProvider]] = None):
        self.providers: list[QuoteProvider] = providers or []

    def add_provider(self, provider: QuoteProvider) -> None:
        """Add a quote provider."""
        self.providers.append(provider)

    async def get_all_quotes(
        self,
        chain: Chain,
        from_asset: str,
        to_asset: str,
        amount: Decimal,
        slippage_percent: Optional[Decimal] = None,
    ) -> list[SwapQuote]:
        """Get quotes from all providers that support the pair."""
        quotes = []

        for provider in self.providers:
            if not provider.supports_pair(chain, from_asset, to_asset):
                continue
            try:
                quote = await provider.get_quote(chain, from_asset, to_asset, amount, slippage_percent)
            except QuoteUnavailable as e:
                logger.warning(f"{provider.name} quote failed: {e}")
                continue
            logger.info(
                f"Quote from {provider.name}: {quote.from_amount} {quote.from_asset} -> "
                f"{quote.to_amount} {quote.to_asset} (rate: {quote.effective_rate:.6f})"
            )
            quotes.append(quote)

        return quotes

    async def get_best_quote(
        self,
        chain: Chain,
        from_asset: str,
        to_asset: str,
        amount: Decimal,
        slippage_percent: Optional[Decimal] = None,
    ) -> SwapQuote:
        """Get the quote with the highest output amount.

        Raises:
            QuoteUnavailable: If no provider returned a quote
        """
        logger.info(f"Finding best quote on {chain.value}: {amount} {from_asset} -> {to_asset}")
        quotes = await self.get_all_quotes(chain, from_asset, to_asset, amount, slippage_percent)

        if not quotes:
            raise QuoteUnavailable(f"No quotes available for {from_asset}->{to_asset} on {chain.value}")

        best = max(quotes, key=lambda q: q.to_amount)
        logger.info(f"Selected best quote: {best.provider} - {best.to_amount} {best.to_asset}")
        return best
