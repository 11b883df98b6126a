"""
Price Source Registry - Central registry for the pricing feeds.

Provides:
- Source registration and lookup by PriceSource
- One quote per (symbol, source)
- Concurrent comparison board across all sources
- Demo fallback when no live feed answers
- Price history
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from price_sources.base import BaseQuoteSource
from price_sources.models import (
    SUPPORTED_PERIODS,
    PriceBoard,
    PriceHistory,
    PriceQuote,
    PriceSource,
    SourceHealth,
)
from price_sources.normalizer import PriceNormalizer
from price_sources.providers import (
    BestPriceSource,
    DemoPriceSource,
    DexQuoteSource,
    HistorySource,
    NetworkFeeSource,
    SpotPriceSource,
)

if TYPE_CHECKING:
    from core.config import AppConfig


logger = logging.getLogger(__name__)


class PriceSourceRegistry:
    """
    Central registry for price sources.

    Usage:
        registry = PriceSourceRegistry()
        registry.register(SpotPriceSource())
        registry.register(DexQuoteSource())
        registry.register(BestPriceSource())

        quote = await registry.fetch_quote("ETH", PriceSource.SPOT)
        board = await registry.fetch_board("ETH")
    """

    def __init__(
        self,
        history_source: Optional[HistorySource] = None,
        demo_source: Optional[DemoPriceSource] = None,
        demo_fallback: bool = True,
    ) -> None:
        self._sources: dict[PriceSource, BaseQuoteSource] = {}
        self._history_source = history_source
        self._demo_source = demo_source or DemoPriceSource()
        self._demo_fallback = demo_fallback

    def register(self, source: BaseQuoteSource) -> None:
        """Register a quote source, replacing any source for the same PriceSource."""
        key = source.price_source
        if key in self._sources:
            logger.warning(f"Source '{key.value}' already registered, replacing")
        self._sources[key] = source
        logger.info(f"Registered source '{source.name}' for {key.value}")

    def get_source(self, source: PriceSource) -> Optional[BaseQuoteSource]:
        return self._sources.get(source)

    def list_sources(self) -> list[PriceSource]:
        return [s for s in PriceSource if s in self._sources]

    def get_all_health(self) -> dict[str, SourceHealth]:
        """Get health status for all registered sources."""
        health = {s.name: s.get_health() for s in self._sources.values()}
        if self._history_source is not None:
            health[self._history_source.name] = self._history_source.get_health()
        return health

    async def fetch_quote(self, symbol: str, source: PriceSource, with_fee: bool = False) -> PriceQuote:
        """
        Fetch one fresh quote for a (symbol, source) pair.

        Only the price request is made unless with_fee is set.

        Note:
            Never raises - returns an unavailable quote on failure
        """
        feed = self._sources.get(source)
        if feed is None:
            logger.warning(f"No source registered for {source.value}")
            return PriceQuote.unavailable(source, symbol)

        try:
            return await feed.fetch(symbol, with_fee=with_fee)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{feed.name}] Unexpected failure for {symbol.upper()}: {e}")
            return PriceQuote.unavailable(source, symbol)

    async def fetch_board(self, symbol: str) -> PriceBoard:
        """
        Fetch all sources concurrently and assemble the comparison board.

        Falls back to demo prices when demo fallback is enabled and no live
        source produced a usable quote.
        """
        spot, dex, best = await asyncio.gather(
            self.fetch_quote(symbol, PriceSource.SPOT),
            self.fetch_quote(symbol, PriceSource.DEX, with_fee=True),
            self.fetch_quote(symbol, PriceSource.BEST),
        )

        live = any(q.is_available for q in (spot, dex, best))
        if not live and self._demo_fallback:
            logger.info(f"No live prices for {symbol.upper()}, serving demo board")
            return self._demo_source.board(symbol)

        return PriceBoard(
            symbol=symbol.upper(),
            spot=spot,
            dex=dex,
            best=best,
            fee=dex.auxiliary_fee,
        )

    async def fetch_history(self, symbol: str, days: int = 7) -> PriceHistory:
        """
        Fetch price history for one of the supported periods.

        Note:
            Never raises - unknown periods and failures give an empty history
        """
        if self._history_source is None:
            logger.warning("No history source registered")
            return PriceHistory(symbol=symbol.upper(), days=days)
        if days not in SUPPORTED_PERIODS:
            logger.warning(f"Unsupported history period: {days}d")
            return PriceHistory(symbol=symbol.upper(), days=days)
        return await self._history_source.fetch_history(symbol, days)

    async def close(self) -> None:
        """Close all sources."""
        for source in self._sources.values():
            await source.close()
        if self._history_source is not None:
            await self._history_source.close()


def create_registry(config: "AppConfig") -> PriceSourceRegistry:
    """Build a registry with the live feeds wired from configuration."""
    normalizer = PriceNormalizer(
        notional_input=config.dex_notional_input,
        native_asset=config.native_asset,
        gas_units=config.gas_units,
        native_asset_usd=config.native_asset_usd,
    )
    common = {
        "base_url": config.api_base_url,
        "timeout": config.request_timeout_seconds,
        "max_retries": config.max_retries,
    }

    registry = PriceSourceRegistry(
        history_source=HistorySource(**common),
        demo_fallback=config.demo_fallback,
    )
    registry.register(SpotPriceSource(normalizer=normalizer, **common))
    registry.register(DexQuoteSource(
        normalizer=normalizer,
        fee_source=NetworkFeeSource(native_asset=config.native_asset, **common),
        sell_token=config.dex_sell_token,
        **common,
    ))
    registry.register(BestPriceSource(normalizer=normalizer, **common))
    return registry
