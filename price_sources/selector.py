"""
Best Price Selector.

Picks the comparison value across sources. An explicit Best-source
quote always wins; otherwise the cheapest of Spot and DEX is used.
"""

from decimal import Decimal
from typing import Optional

from price_sources.models import PriceBoard, PriceQuote, PriceSource


class _NoMinimum:
    """Sentinel for "no comparable price" - never confused with zero."""

    def __repr__(self) -> str:
        return "NO_MINIMUM"


NO_MINIMUM = _NoMinimum()


def _minimum(quotes: list[PriceQuote]):
    best = NO_MINIMUM
    for quote in quotes:
        if not quote.is_available:
            continue
        if best is NO_MINIMUM or quote.value < best:
            best = quote.value
    return best


def select_best(board: PriceBoard) -> Optional[Decimal]:
    """
    Select the best-price comparison value.

    Returns the Best-source value verbatim when present, else the minimum
    of the available Spot/DEX values, else None.
    """
    if board.best.is_available:
        return board.best.value

    cheapest = _minimum([board.spot, board.dex])
    if cheapest is NO_MINIMUM:
        return None
    return cheapest


def cheapest_source(board: PriceBoard) -> Optional[PriceSource]:
    """Which of Spot/DEX carries the lower available price."""
    cheapest = _minimum([board.spot, board.dex])
    if cheapest is NO_MINIMUM:
        return None
    # Spot wins ties
    if board.spot.is_available and board.spot.value == cheapest:
        return PriceSource.SPOT
    return PriceSource.DEX


def is_best(quote: PriceQuote, board: PriceBoard) -> bool:
    """Highlight flag for a Spot/DEX quote in the comparison view."""
    if quote.source == PriceSource.BEST or not quote.is_available:
        return False
    best = select_best(board)
    return best is not None and quote.value == best


class BestPriceSelector:
    """Object wrapper so the selector can be injected."""

    def select_best(self, board: PriceBoard) -> Optional[Decimal]:
        return select_best(board)

    def is_best(self, quote: PriceQuote, board: PriceBoard) -> bool:
        return is_best(quote, board)

    def cheapest_source(self, board: PriceBoard) -> Optional[PriceSource]:
        return cheapest_source(board)
