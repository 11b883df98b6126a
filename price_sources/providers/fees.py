"""
Network Fee Source - Base fee estimator for the network-native asset.

Endpoint: GET /fees/{asset} -> {result: {ProposeGasPrice: string}}
"""

from typing import Any, Optional

import aiohttp

from price_sources.base import DEFAULT_BASE_URL, BasePriceSource
from price_sources.normalizer import DEFAULT_NATIVE_ASSET


class NetworkFeeSource(BasePriceSource):
    """Fetches the proposed base fee (in gwei) for the native asset."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        native_asset: str = DEFAULT_NATIVE_ASSET,
        timeout: float = BasePriceSource.DEFAULT_TIMEOUT,
        max_retries: int = BasePriceSource.MAX_RETRIES,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(base_url, timeout, max_retries, session)
        self._native_asset = native_asset.upper()

    @property
    def name(self) -> str:
        return f"fees_{self._native_asset.lower()}"

    @property
    def native_asset(self) -> str:
        return self._native_asset

    def applies_to(self, symbol: str) -> bool:
        """Only the network-native asset has an estimator."""
        return symbol.upper() == self._native_asset

    async def fetch_raw(self, symbol: str, **params: Any) -> Any:
        url = f"{self._base_url}/fees/{self._native_asset.lower()}"
        return await self._make_request("GET", url)

    async def fetch_fee_payload(self) -> Optional[Any]:
        """Fee estimator payload, or None on failure."""
        return await self.fetch_payload(self._native_asset)
