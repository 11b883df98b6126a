"""
History Source - Historical price trend for a symbol.

Endpoint: GET /history/{symbol}?days={days} -> {prices: [[timestampMillis, price], ...]}
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, TypeVar

from price_sources.base import BasePriceSource
from price_sources.models import PriceHistory, PricePoint
from price_sources.normalizer import parse_decimal


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_POINTS = 150


def downsample(points: Sequence[T], max_points: int = DEFAULT_MAX_POINTS) -> list[T]:
    """
    Thin a series to at most `max_points` by keeping every step-th element.

    step = ceil(len / max_points)
    """
    if max_points <= 0 or len(points) <= max_points:
        return list(points)
    step = math.ceil(len(points) / max_points)
    return [p for i, p in enumerate(points) if i % step == 0]


def parse_history(raw: Any) -> list[PricePoint]:
    """
    Parse a history payload, dropping unusable samples.

    A sample is kept only when it has a truthy timestamp and a non-zero
    numeric price.
    """
    if not isinstance(raw, dict):
        return []
    samples = raw.get("prices")
    if not isinstance(samples, list):
        return []

    points: list[PricePoint] = []
    for sample in samples:
        if not isinstance(sample, (list, tuple)) or len(sample) < 2:
            continue
        ts, price = sample[0], sample[1]
        if not ts or isinstance(ts, bool) or not isinstance(ts, (int, float)):
            continue
        value = parse_decimal(price)
        if value is None or value == 0:
            continue
        try:
            timestamp = datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            continue
        points.append(PricePoint(timestamp=timestamp, price=value))
    return points


class HistorySource(BasePriceSource):
    """Fetches and cleans price history."""

    ENDPOINT = "/history"

    @property
    def name(self) -> str:
        return "history"

    async def fetch_raw(self, symbol: str, **params: Any) -> Any:
        days = params.get("days", 7)
        url = f"{self._base_url}{self.ENDPOINT}/{symbol.lower()}"
        return await self._make_request("GET", url, params={"days": str(days)})

    async def fetch_history(
        self,
        symbol: str,
        days: int = 7,
        max_points: Optional[int] = DEFAULT_MAX_POINTS,
    ) -> PriceHistory:
        """
        Fetch history for a day range.

        Note:
            Never raises - returns an empty history on failure
        """
        payload = await self.fetch_payload(symbol, days=days)
        points = parse_history(payload) if payload is not None else []
        if max_points:
            points = downsample(points, max_points)
        logger.debug(f"[{self.name}] {len(points)} point(s) for {symbol.upper()} over {days}d")
        return PriceHistory(symbol=symbol.upper(), days=days, points=tuple(points))
