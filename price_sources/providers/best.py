"""
Best Price Source - Precomputed cross-venue optimal price.

Endpoint: GET /best_price?symbol={symbol} -> {best_price: {price_usd: number}}
"""

from typing import Any

from price_sources.base import BaseQuoteSource
from price_sources.models import PriceSource


class BestPriceSource(BaseQuoteSource):
    """Best price supplied directly by an upstream aggregator."""

    ENDPOINT = "/best_price"

    @property
    def price_source(self) -> PriceSource:
        return PriceSource.BEST

    async def fetch_raw(self, symbol: str, **params: Any) -> Any:
        """Fetch the best-price payload."""
        url = f"{self._base_url}{self.ENDPOINT}"
        return await self._make_request("GET", url, params={"symbol": symbol.lower()})
