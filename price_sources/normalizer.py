"""
Price Normalizer - Reconciles heterogeneous upstream payloads.

============================================================
RESPONSIBILITY
============================================================
Converts each upstream source's raw response into one canonical
PriceQuote.

- Spot: direct `price` field
- DEX: implied price of a fixed notional swap quote
- Best: nested `best_price.price_usd` field

============================================================
FAIL-SOFT CONTRACT
============================================================
normalize() NEVER raises. A missing, malformed, zero, NaN or
infinite value yields a quote whose value is None.

============================================================
"""

import logging
import re
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from price_sources.models import PriceQuote, PriceSource, is_usable_price


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

DEFAULT_NOTIONAL_INPUT = Decimal("10000")
"""USD-denominated input amount the DEX quote is requested for."""

DEFAULT_NATIVE_ASSET = "ETH"
"""Network-native asset whose fee can be estimated from the base fee."""

DEFAULT_GAS_UNITS = 21000
"""Gas units of a plain transfer."""

DEFAULT_NATIVE_ASSET_USD = Decimal("4000")
"""USD conversion constant for the native asset."""

GWEI = Decimal("0.000000001")

_INTEGER_PREFIX = re.compile(r"^\s*([+-]?\d+)")


# ============================================================
# PARSING HELPERS
# ============================================================

def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse an upstream number into a finite Decimal.

    Returns None for missing, boolean, unparsable, NaN or infinite input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
    else:
        return None
    if not result.is_finite():
        return None
    return result


def parse_integer_amount(value: Any) -> Optional[Decimal]:
    """
    Parse an integer token amount the way quote feeds emit it.

    Strings are read up to the first non-digit character, so "20000000"
    and "20000000.9" both give 20000000.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        match = _INTEGER_PREFIX.match(value)
        if not match:
            return None
        return Decimal(match.group(1))
    parsed = parse_decimal(value)
    if parsed is None:
        return None
    return parsed.to_integral_value(rounding=ROUND_DOWN)


def _parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _nested(raw: Any, *keys: str) -> Any:
    """Walk nested mappings, returning None on any missing level."""
    current = raw
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


# ============================================================
# PRICE NORMALIZER
# ============================================================

class PriceNormalizer:
    """
    Converts raw upstream responses into PriceQuote objects.

    Stateless apart from the DEX and fee constants it is configured with.
    """

    def __init__(
        self,
        notional_input: Decimal = DEFAULT_NOTIONAL_INPUT,
        native_asset: str = DEFAULT_NATIVE_ASSET,
        gas_units: int = DEFAULT_GAS_UNITS,
        native_asset_usd: Decimal = DEFAULT_NATIVE_ASSET_USD,
    ) -> None:
        self.notional_input = Decimal(notional_input)
        self.native_asset = native_asset.upper()
        self.gas_units = gas_units
        self.native_asset_usd = Decimal(native_asset_usd)

    def normalize(
        self,
        source: PriceSource,
        raw: Any,
        symbol: str,
        fee_raw: Any = None,
    ) -> PriceQuote:
        """
        Normalize one raw response.

        Args:
            source: Source the payload came from
            raw: Decoded JSON payload (or None if the fetch failed)
            symbol: Ticker the payload was requested for
            fee_raw: Network fee estimator payload (DEX only)

        Returns:
            PriceQuote - value is None when unusable
        """
        symbol = symbol.upper()
        try:
            if source == PriceSource.SPOT:
                value = self.spot_price(raw)
                fee = None
            elif source == PriceSource.DEX:
                value = self.dex_price(raw)
                fee = self.dex_fee(raw, symbol, fee_raw)
            elif source == PriceSource.BEST:
                value = self.best_price(raw)
                fee = None
            else:
                return PriceQuote.unavailable(source, symbol)
        except Exception as e:
            logger.debug(f"[{source.value}] Normalization failed for {symbol}: {e}")
            return PriceQuote.unavailable(source, symbol)

        return PriceQuote(
            source=source,
            symbol=symbol,
            value=value if is_usable_price(value) else None,
            auxiliary_fee=fee,
        )

    def spot_price(self, raw: Any) -> Optional[Decimal]:
        """Spot feed: `{price: number}`."""
        return parse_decimal(_nested(raw, "price"))

    def best_price(self, raw: Any) -> Optional[Decimal]:
        """Best feed: `{best_price: {price_usd: number}}`."""
        return parse_decimal(_nested(raw, "best_price", "price_usd"))

    def dex_price(self, raw: Any) -> Optional[Decimal]:
        """
        DEX feed: `{price: {destAmount, destDecimals}}`.

        price = notional_input / (destAmount / 10 ** destDecimals)
        """
        dest_amount = parse_integer_amount(_nested(raw, "price", "destAmount"))
        if dest_amount is None or dest_amount <= 0:
            return None

        dest_decimals = _parse_int(_nested(raw, "price", "destDecimals"))
        if dest_decimals is None:
            return None

        try:
            bought = dest_amount / (Decimal(10) ** dest_decimals)
            if bought <= 0:
                return None
            value = self.notional_input / bought
        except ArithmeticError:
            return None

        if not value.is_finite():
            return None
        return value

    def dex_fee(self, raw: Any, symbol: str, fee_raw: Any = None) -> Optional[Decimal]:
        """
        Fee attached to a DEX quote.

        Explicit `gasCostUSD` wins; the native asset falls back to an
        estimate from the proposed base fee; otherwise no fee.
        """
        explicit = _nested(raw, "price", "gasCostUSD")
        if explicit not in (None, ""):
            return self._valid_fee(parse_decimal(explicit))

        if symbol.upper() == self.native_asset:
            return self.estimate_native_fee(fee_raw)

        return None

    def estimate_native_fee(self, fee_raw: Any) -> Optional[Decimal]:
        """base_fee_gwei * 1e-9 * gas_units * native_asset_usd"""
        base_fee = parse_decimal(_nested(fee_raw, "result", "ProposeGasPrice"))
        if base_fee is None or base_fee <= 0:
            return None
        return self._valid_fee(
            base_fee * GWEI * Decimal(self.gas_units) * self.native_asset_usd
        )

    @staticmethod
    def _valid_fee(fee: Optional[Decimal]) -> Optional[Decimal]:
        if fee is None or not fee.is_finite() or fee < 0:
            return None
        return fee


_default_normalizer = PriceNormalizer()


def normalize(
    source: PriceSource,
    raw: Any,
    symbol: str,
    fee_raw: Any = None,
) -> PriceQuote:
    """Normalize with the default DEX and fee constants."""
    return _default_normalizer.normalize(source, raw, symbol, fee_raw)
