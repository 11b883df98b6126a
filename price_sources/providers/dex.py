"""
DEX Quote Source - Price implied by a decentralized-exchange swap quote.

Endpoint: GET /dex/paraswap_quote?sell_token=USDC&buy_token={SYMBOL}&amount=10000
    -> {price: {destAmount: string, destDecimals: int, gasCostUSD?: string}}

The quote answers "how much of the target asset does a fixed USD input
buy"; the normalizer turns that into a unit price. For the network-native
asset the fee estimator is queried alongside the quote.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Optional

import aiohttp

from price_sources.base import DEFAULT_BASE_URL, BasePriceSource, BaseQuoteSource
from price_sources.models import PriceQuote, PriceSource
from price_sources.normalizer import PriceNormalizer
from price_sources.providers.fees import NetworkFeeSource


logger = logging.getLogger(__name__)


class DexQuoteSource(BaseQuoteSource):
    """DEX aggregator quote for a fixed notional input."""

    ENDPOINT = "/dex/paraswap_quote"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        normalizer: Optional[PriceNormalizer] = None,
        fee_source: Optional[NetworkFeeSource] = None,
        sell_token: str = "USDC",
        timeout: float = BasePriceSource.DEFAULT_TIMEOUT,
        max_retries: int = BasePriceSource.MAX_RETRIES,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(base_url, normalizer, timeout, max_retries, session)
        self._fee_source = fee_source
        self._sell_token = sell_token.upper()

    @property
    def price_source(self) -> PriceSource:
        return PriceSource.DEX

    @property
    def notional_input(self) -> Decimal:
        return self._normalizer.notional_input

    async def fetch_raw(self, symbol: str, **params: Any) -> Any:
        """Fetch the swap quote payload."""
        url = f"{self._base_url}{self.ENDPOINT}"
        query = {
            "sell_token": self._sell_token,
            "buy_token": symbol.upper(),
            "amount": str(int(self.notional_input)),
        }
        return await self._make_request("GET", url, params=query)

    def normalize(self, raw: Any, symbol: str, fee_raw: Any = None) -> PriceQuote:
        return self._normalizer.normalize(self.price_source, raw, symbol, fee_raw)

    async def fetch(self, symbol: str, with_fee: bool = True) -> PriceQuote:
        """
        Fetch the quote, and the fee estimate for the native asset when
        with_fee is set.

        Note:
            Never raises - returns an unavailable quote on failure
        """
        if with_fee and self._fee_source is not None and self._fee_source.applies_to(symbol):
            payload, fee_payload = await asyncio.gather(
                self.fetch_payload(symbol),
                self._fee_source.fetch_fee_payload(),
            )
        else:
            payload, fee_payload = await self.fetch_payload(symbol), None

        if payload is None:
            return PriceQuote.unavailable(self.price_source, symbol)

        quote = self.normalize(payload, symbol, fee_payload)
        if not quote.is_available:
            logger.warning(f"[{self.name}] Unusable quote for {symbol.upper()}")
        return quote

    async def close(self) -> None:
        await super().close()
        if self._fee_source is not None:
            await self._fee_source.close()
