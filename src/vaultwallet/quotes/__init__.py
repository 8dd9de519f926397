"""Price and swap quote providers."""

from vaultwallet.quotes.base import (
    PriceProvider,
    QuoteAggregator,
    QuoteProvider,
    SwapQuote,
    TokenPrice,
)
from vaultwallet.quotes.coingecko import CoinGeckoPriceProvider
from vaultwallet.quotes.oneinch import OneInchQuoteProvider

__all__ = [
    "CoinGeckoPriceProvider",
    "OneInchQuoteProvider",
    "PriceProvider",
    "QuoteAggregator",
    "QuoteProvider",
    "SwapQuote",
    "TokenPrice",
]
