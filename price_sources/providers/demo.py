"""
Demo Price Source - Deterministic offline prices.

Used when the live feeds are unreachable so the comparison view still has
something to show. Prices are scaled per symbol from fixed ETH-like bases.
"""

from decimal import Decimal

from price_sources.models import PriceBoard, PriceQuote, PriceSource


DEMO_BASE_PRICES = {
    PriceSource.SPOT: Decimal("2345.67"),
    PriceSource.DEX: Decimal("2351.20"),
    PriceSource.BEST: Decimal("2348.50"),
}

DEMO_MULTIPLIERS = {
    "BTC": Decimal("20"),
    "ETH": Decimal("1"),
    "SOL": Decimal("0.5"),
    "USDT": Decimal("0.00025"),
}

DEFAULT_MULTIPLIER = Decimal("0.0001")

DEMO_FEE = Decimal("5.0")


class DemoPriceSource:
    """Offline stand-in for the three live feeds."""

    name = "demo"

    def multiplier(self, symbol: str) -> Decimal:
        return DEMO_MULTIPLIERS.get(symbol.upper(), DEFAULT_MULTIPLIER)

    def quote(self, symbol: str, source: PriceSource) -> PriceQuote:
        """Demo quote for one source."""
        return PriceQuote(
            source=source,
            symbol=symbol.upper(),
            value=DEMO_BASE_PRICES[source] * self.multiplier(symbol),
            auxiliary_fee=DEMO_FEE if source == PriceSource.DEX else None,
        )

    def board(self, symbol: str) -> PriceBoard:
        """Demo comparison board."""
        return PriceBoard(
            symbol=symbol.upper(),
            spot=self.quote(symbol, PriceSource.SPOT),
            dex=self.quote(symbol, PriceSource.DEX),
            best=self.quote(symbol, PriceSource.BEST),
            fee=DEMO_FEE,
            demo=True,
        )
