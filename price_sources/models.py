"""
Price Source Models - Normalized price structures.

Every upstream feed is reconciled into these types. No downstream module
depends on provider-specific payload fields.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def is_usable_price(value: Optional[Decimal]) -> bool:
    """A price is usable when it is a finite, strictly positive Decimal."""
    if value is None or not isinstance(value, Decimal):
        return False
    return value.is_finite() and value > 0


class PriceSource(Enum):
    """Pricing sources that can be compared and alerted on."""
    SPOT = "Spot"
    DEX = "DEX"
    BEST = "Best"

    @classmethod
    def parse(cls, value: str) -> "PriceSource":
        """Resolve a source from its value or name, case-insensitively."""
        text = str(value).strip()
        for source in cls:
            if text.lower() in (source.value.lower(), source.name.lower()):
                return source
        raise ValueError(f"Unknown price source: {value!r}")


class SourceStatus(Enum):
    """Health status of a price source."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PriceQuote:
    """
    Canonical price from one source - produced fresh on every fetch.

    `value` is None when the source is unavailable or returned an unusable
    payload. `auxiliary_fee` is the network fee attached to a DEX quote.
    """
    source: PriceSource
    symbol: str
    value: Optional[Decimal] = None
    auxiliary_fee: Optional[Decimal] = None
    fetched_at: datetime = field(default_factory=utc_now)

    @property
    def is_available(self) -> bool:
        """Check if the quote carries a usable price."""
        return is_usable_price(self.value)

    @classmethod
    def unavailable(cls, source: PriceSource, symbol: str) -> "PriceQuote":
        """Build an absent quote."""
        return cls(source=source, symbol=symbol.upper())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "source": self.source.value,
            "symbol": self.symbol,
            "value": str(self.value) if self.value is not None else None,
            "auxiliary_fee": str(self.auxiliary_fee) if self.auxiliary_fee is not None else None,
            "fetched_at": self.fetched_at.isoformat(),
        }


@dataclass(frozen=True)
class PriceBoard:
    """Side-by-side comparison of all sources for one symbol."""
    symbol: str
    spot: PriceQuote
    dex: PriceQuote
    best: PriceQuote
    fee: Optional[Decimal] = None
    demo: bool = False

    def quote_for(self, source: PriceSource) -> PriceQuote:
        """Get the quote for a source."""
        return {
            PriceSource.SPOT: self.spot,
            PriceSource.DEX: self.dex,
            PriceSource.BEST: self.best,
        }[source]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "spot": self.spot.to_dict(),
            "dex": self.dex.to_dict(),
            "best": self.best.to_dict(),
            "fee": str(self.fee) if self.fee is not None else None,
            "demo": self.demo,
        }


@dataclass(frozen=True)
class PricePoint:
    """Single historical price sample."""
    timestamp: datetime
    price: Decimal


PERIOD_LABELS = {
    1: "24-Hour",
    7: "7-Day",
    30: "30-Day",
    90: "90-Day",
}

SUPPORTED_PERIODS = tuple(PERIOD_LABELS.keys())


@dataclass(frozen=True)
class PriceHistory:
    """Historical price trend for a symbol over a day range."""
    symbol: str
    days: int
    points: tuple[PricePoint, ...] = ()

    @property
    def period_label(self) -> str:
        """Human label for the period."""
        return PERIOD_LABELS.get(self.days, f"{self.days}-Day")

    @property
    def is_empty(self) -> bool:
        return not self.points

    def latest(self) -> Optional[PricePoint]:
        """Most recent point, if any."""
        return self.points[-1] if self.points else None


@dataclass
class SourceHealth:
    """Health status of a price source."""
    status: SourceStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    uptime_percentage: float = 100.0

    def is_usable(self) -> bool:
        """Check if source can still be used (anything but UNAVAILABLE)."""
        return self.status in (SourceStatus.HEALTHY, SourceStatus.DEGRADED, SourceStatus.UNKNOWN)


@dataclass
class SourceIncident:
    """Record of a price source incident."""
    source_name: str
    incident_type: str
    timestamp: datetime
    error_message: str
    symbol: Optional[str] = None
