"""
Spot Price Source - Centralized aggregator reference price.

Endpoint: GET /price/spot?coin={symbol} -> {price: number}
"""

import logging
from typing import Any

from price_sources.base import BaseQuoteSource
from price_sources.models import PriceSource


logger = logging.getLogger(__name__)


class SpotPriceSource(BaseQuoteSource):
    """Single reference price from a centralized aggregator."""

    ENDPOINT = "/price/spot"

    @property
    def price_source(self) -> PriceSource:
        return PriceSource.SPOT

    async def fetch_raw(self, symbol: str, **params: Any) -> Any:
        """Fetch the spot payload."""
        url = f"{self._base_url}{self.ENDPOINT}"
        return await self._make_request("GET", url, params={"coin": symbol.lower()})
