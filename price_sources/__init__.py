"""
Price Sources Package - Upstream price feeds and normalization.

Reconciles heterogeneous upstream price representations into a single
comparable value per source.

Features:
- Spot, DEX and Best feeds behind one fail-soft interface
- Normalized PriceQuote output across all sources
- Best-price selection with explicit precedence
- Health monitoring with incident logging
- Price history with downsampling

Quick Start:
    from price_sources import create_registry, select_best
    from core.config import AppConfig

    async def compare():
        registry = create_registry(AppConfig.from_env())
        board = await registry.fetch_board("ETH")
        print(select_best(board))
        await registry.close()
"""

from price_sources.base import BasePriceSource, BaseQuoteSource
from price_sources.exceptions import (
    FetchError,
    NormalizationError,
    PriceSourceError,
    RateLimitError,
)
from price_sources.models import (
    PriceBoard,
    PriceHistory,
    PricePoint,
    PriceQuote,
    PriceSource,
    SourceHealth,
    SourceIncident,
    SourceStatus,
)
from price_sources.normalizer import PriceNormalizer, normalize
from price_sources.providers import (
    BestPriceSource,
    DemoPriceSource,
    DexQuoteSource,
    HistorySource,
    NetworkFeeSource,
    SpotPriceSource,
)
from price_sources.registry import PriceSourceRegistry, create_registry
from price_sources.selector import BestPriceSelector, cheapest_source, is_best, select_best


__all__ = [
    # Base
    "BasePriceSource",
    "BaseQuoteSource",

    # Models
    "PriceBoard",
    "PriceHistory",
    "PricePoint",
    "PriceQuote",
    "PriceSource",
    "SourceHealth",
    "SourceIncident",
    "SourceStatus",

    # Exceptions
    "PriceSourceError",
    "FetchError",
    "NormalizationError",
    "RateLimitError",

    # Normalization / selection
    "PriceNormalizer",
    "normalize",
    "BestPriceSelector",
    "select_best",
    "is_best",
    "cheapest_source",

    # Providers
    "SpotPriceSource",
    "DexQuoteSource",
    "BestPriceSource",
    "NetworkFeeSource",
    "HistorySource",
    "DemoPriceSource",

    # Registry
    "PriceSourceRegistry",
    "create_registry",
]
