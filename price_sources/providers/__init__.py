"""
Providers package - Upstream price feed implementations.
"""

from price_sources.providers.best import BestPriceSource
from price_sources.providers.demo import DemoPriceSource
from price_sources.providers.dex import DexQuoteSource
from price_sources.providers.fees import NetworkFeeSource
from price_sources.providers.history import HistorySource, downsample, parse_history
from price_sources.providers.spot import SpotPriceSource


__all__ = [
    "BestPriceSource",
    "DemoPriceSource",
    "DexQuoteSource",
    "HistorySource",
    "NetworkFeeSource",
    "SpotPriceSource",
    "downsample",
    "parse_history",
]
