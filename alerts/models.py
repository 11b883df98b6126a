"""
Alerts Module - Data Models.

============================================================
RESPONSIBILITY
============================================================
Defines the alert record and the values produced while monitoring it.

- Alert: immutable price-threshold alert
- TriggerEvent: an alert whose condition held in a cycle
- Notification: title/body pair handed to notification sinks
- CycleResult: summary of one monitoring cycle

============================================================
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from price_sources.models import PriceSource, is_usable_price, utc_now


# ============================================================
# HELPERS
# ============================================================

def format_amount(value: Decimal) -> str:
    """Plain (non-exponent) rendering of a Decimal amount."""
    return format(value, "f")


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _parse_amount(value: Any, name: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValueError(f"{name} is missing")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} is not a number: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"{name} is not finite: {value!r}")
    return amount


def _parse_id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid alert id: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        # JSON decodes 1e999 and Infinity to float infinity
        if not math.isfinite(value) or not value.is_integer():
            raise ValueError(f"Invalid alert id: {value!r}")
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"Invalid alert id: {value!r}")


# ============================================================
# ALERT
# ============================================================

class AlertDirection(Enum):
    """Which side of the target the price must reach."""

    ABOVE = "above"
    """Trigger when price >= target."""

    BELOW = "below"
    """Trigger when price <= target."""

    @classmethod
    def parse(cls, value: str) -> "AlertDirection":
        """Resolve a direction case-insensitively."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown alert direction: {value!r}")


GroupKey = Tuple[str, PriceSource]


@dataclass(frozen=True)
class Alert:
    """
    Price-threshold alert.

    Never mutated after creation. The store replaces snapshots instead.
    """

    id: int
    symbol: str
    target_price: Decimal
    reference_price: Decimal
    direction: AlertDirection
    source: PriceSource
    created_at: datetime = field(default_factory=utc_now)

    @property
    def group_key(self) -> GroupKey:
        """Alerts sharing this key are evaluated against one fetch."""
        return (self.symbol, self.source)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "target_price": format_amount(self.target_price),
            "reference_price": format_amount(self.reference_price),
            "direction": self.direction.value,
            "source": self.source.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        """
        Deserialize from dictionary.

        Accepts both the snake_case layout written by to_dict() and the
        camelCase layout of older stored records.

        Raises:
            ValueError, KeyError, TypeError: on malformed records
        """
        if not isinstance(data, dict):
            raise TypeError(f"Alert record must be an object, got {type(data).__name__}")

        alert_id = _parse_id(data["id"])

        symbol = str(data["symbol"]).strip().upper()
        if not symbol:
            raise ValueError("Alert symbol is empty")

        target = _parse_amount(data.get("target_price", data.get("targetPrice")), "target_price")
        if not is_usable_price(target):
            raise ValueError(f"Alert target must be positive: {target}")

        reference = _parse_amount(
            data.get("reference_price", data.get("currentPrice")), "reference_price"
        )

        direction = AlertDirection.parse(data.get("direction", data.get("type")))
        source = PriceSource.parse(data["source"])

        created_raw = data.get("created_at", data.get("createdAt"))
        created_at = _parse_timestamp(created_raw) if created_raw else utc_now()

        return cls(
            id=alert_id,
            symbol=symbol,
            target_price=target,
            reference_price=reference,
            direction=direction,
            source=source,
            created_at=created_at,
        )

    def describe(self) -> str:
        """Short human description."""
        return (
            f"{self.symbol} {self.source.value} {self.direction.value} "
            f"${format_amount(self.target_price)}"
        )


def triggers(alert: Alert, price: Decimal) -> bool:
    """Inclusive trigger condition."""
    if alert.direction == AlertDirection.ABOVE:
        return price >= alert.target_price
    return price <= alert.target_price


# ============================================================
# NOTIFICATIONS
# ============================================================

@dataclass(frozen=True)
class Notification:
    """Message handed to notification sinks."""

    title: str
    body: str
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notification":
        if not isinstance(data, dict):
            raise TypeError(f"Notification record must be an object, got {type(data).__name__}")
        created_raw = data.get("created_at", data.get("timestamp"))
        return cls(
            title=str(data["title"]),
            body=str(data["body"]),
            created_at=_parse_timestamp(created_raw) if created_raw else utc_now(),
        )


@dataclass(frozen=True)
class TriggerEvent:
    """An alert whose condition held against a fresh price."""

    alert: Alert
    price: Decimal
    triggered_at: datetime = field(default_factory=utc_now)

    def notification(self) -> Notification:
        """Build the user notification for this trigger."""
        alert = self.alert
        return Notification(
            title=f"{alert.symbol} {alert.source.value} Price Alert",
            body=(
                f"{alert.symbol} {alert.source.value} {alert.direction.value} "
                f"${format_amount(alert.target_price)} target hit! "
                f"Current: ${self.price:.2f}"
            ),
            created_at=self.triggered_at,
        )

    def toast_message(self) -> str:
        """Short in-app message for this trigger."""
        alert = self.alert
        return (
            f"\U0001F3AF {alert.symbol} {alert.source.value} hit "
            f"${format_amount(alert.target_price)}! Current: ${self.price:.2f}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert": self.alert.to_dict(),
            "price": format_amount(self.price),
            "triggered_at": self.triggered_at.isoformat(),
        }


# ============================================================
# MONITORING CYCLE
# ============================================================

@dataclass(frozen=True)
class CycleResult:
    """Summary of one monitoring cycle."""

    started_at: datetime
    finished_at: datetime
    groups: int = 0
    fetches: int = 0
    skipped_groups: int = 0
    failed_groups: int = 0
    triggered: Tuple[TriggerEvent, ...] = ()

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000

    @property
    def triggered_ids(self) -> Tuple[int, ...]:
        return tuple(event.alert.id for event in self.triggered)

    @classmethod
    def empty(cls, started_at: Optional[datetime] = None) -> "CycleResult":
        """Result of a cycle with no alerts to evaluate."""
        started = started_at or utc_now()
        return cls(started_at=started, finished_at=utc_now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
            "groups": self.groups,
            "fetches": self.fetches,
            "skipped_groups": self.skipped_groups,
            "failed_groups": self.failed_groups,
            "triggered": [event.to_dict() for event in self.triggered],
        }
