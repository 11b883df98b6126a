"""
Alerts Module - Validator.

============================================================
RESPONSIBILITY
============================================================
Business rules for a proposed price alert.

- validate(): pure, side-effect free, safe to call on every keystroke
- AlertValidator.create_alert(): hard gate at submission time
- AlertIdGenerator: creation-timestamp derived, strictly increasing ids

============================================================
RULES (checked in order)
============================================================
1. NOT_A_NUMBER            input does not parse as a finite number
2. NON_POSITIVE            target <= 0
3. NO_REFERENCE_PRICE      current price absent (or not a usable price)
4. DIRECTION_INCONSISTENT  above needs target > current, below needs target < current
5. OUT_OF_BAND             target outside [(1 - r) * current, (1 + r) * current]

============================================================
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Optional, Union

from price_sources.models import PriceSource, is_usable_price, utc_now

from .exceptions import ValidationRejectedError
from .models import Alert, AlertDirection


logger = logging.getLogger(__name__)


DEFAULT_BAND_RATIO = Decimal("0.5")


# ============================================================
# OUTCOME
# ============================================================

class ValidationReason(Enum):
    """Why a proposed alert was rejected."""

    NOT_A_NUMBER = "not_a_number"
    NON_POSITIVE = "non_positive"
    NO_REFERENCE_PRICE = "no_reference_price"
    DIRECTION_INCONSISTENT = "direction_inconsistent"
    OUT_OF_BAND = "out_of_band"


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating a proposed alert target."""

    reason: Optional[ValidationReason] = None
    message: Optional[str] = None
    target: Optional[Decimal] = None

    @property
    def is_valid(self) -> bool:
        return self.reason is None

    @classmethod
    def valid(cls, target: Decimal) -> "ValidationOutcome":
        return cls(target=target)

    @classmethod
    def invalid(
        cls,
        reason: ValidationReason,
        message: str,
        target: Optional[Decimal] = None,
    ) -> "ValidationOutcome":
        return cls(reason=reason, message=message, target=target)


# ============================================================
# PURE VALIDATION
# ============================================================

def _parse_target(proposed: Any) -> Optional[Decimal]:
    if proposed is None or isinstance(proposed, bool):
        return None
    text = str(proposed).strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


def _percent(ratio: Decimal) -> str:
    return format((ratio * 100).normalize(), "f")


def validate(
    proposed: Any,
    current: Optional[Decimal],
    direction: AlertDirection,
    band_ratio: Decimal = DEFAULT_BAND_RATIO,
) -> ValidationOutcome:
    """
    Validate a proposed alert target against the current price.

    Args:
        proposed: Raw user input (string or number)
        current: Current price of the selected source, or None
        direction: Alert direction
        band_ratio: Allowed relative deviation from current

    Returns:
        ValidationOutcome (never raises)
    """
    target = _parse_target(proposed)
    if target is None:
        return ValidationOutcome.invalid(
            ValidationReason.NOT_A_NUMBER,
            "Please enter a valid price",
        )

    if target <= 0:
        return ValidationOutcome.invalid(
            ValidationReason.NON_POSITIVE,
            "Price must be greater than zero",
            target,
        )

    if not is_usable_price(current):
        return ValidationOutcome.invalid(
            ValidationReason.NO_REFERENCE_PRICE,
            "Current price is unavailable, alert cannot be validated",
            target,
        )

    if direction == AlertDirection.ABOVE and target <= current:
        return ValidationOutcome.invalid(
            ValidationReason.DIRECTION_INCONSISTENT,
            f'"Above" alert must be higher than current price (${current:.2f})',
            target,
        )

    if direction == AlertDirection.BELOW and target >= current:
        return ValidationOutcome.invalid(
            ValidationReason.DIRECTION_INCONSISTENT,
            f'"Below" alert must be lower than current price (${current:.2f})',
            target,
        )

    lower = current * (1 - band_ratio)
    upper = current * (1 + band_ratio)
    if target < lower or target > upper:
        return ValidationOutcome.invalid(
            ValidationReason.OUT_OF_BAND,
            f"Price must be within {_percent(band_ratio)}% of current "
            f"(${lower:.2f} - ${upper:.2f})",
            target,
        )

    return ValidationOutcome.valid(target)


# ============================================================
# ID GENERATION
# ============================================================

class AlertIdGenerator:
    """
    Millisecond-timestamp ids, strictly increasing within the process.

    Two alerts created in the same millisecond get consecutive ids.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._last = 0

    def next_id(self) -> int:
        candidate = int(self._clock() * 1000)
        if candidate <= self._last:
            candidate = self._last + 1
        self._last = candidate
        return candidate

    def observe(self, alert_id: int) -> None:
        """Never issue an id at or below one already in use."""
        if alert_id > self._last:
            self._last = alert_id


# ============================================================
# VALIDATOR
# ============================================================

class AlertValidator:
    """
    Validates proposed alerts and creates the Alert record.

    create_alert() is the only way an Alert leaves this module, so an
    alert that fails validate() can never reach the store.
    """

    def __init__(
        self,
        band_ratio: Decimal = DEFAULT_BAND_RATIO,
        id_generator: Optional[AlertIdGenerator] = None,
    ):
        self._band_ratio = Decimal(band_ratio)
        self._ids = id_generator or AlertIdGenerator()

    @property
    def band_ratio(self) -> Decimal:
        return self._band_ratio

    @property
    def id_generator(self) -> AlertIdGenerator:
        return self._ids

    def validate(
        self,
        proposed: Any,
        current: Optional[Decimal],
        direction: Union[AlertDirection, str],
    ) -> ValidationOutcome:
        """Validate using this validator's band ratio."""
        if not isinstance(direction, AlertDirection):
            direction = AlertDirection.parse(direction)
        return validate(proposed, current, direction, self._band_ratio)

    def create_alert(
        self,
        proposed: Any,
        current: Optional[Decimal],
        direction: Union[AlertDirection, str],
        symbol: str,
        source: Union[PriceSource, str],
    ) -> Alert:
        """
        Validate and build a new alert.

        Raises:
            ValidationRejectedError: If the outcome is not valid
        """
        if not isinstance(direction, AlertDirection):
            direction = AlertDirection.parse(direction)
        if not isinstance(source, PriceSource):
            source = PriceSource.parse(source)

        outcome = validate(proposed, current, direction, self._band_ratio)
        if not outcome.is_valid:
            logger.info(
                f"Alert rejected for {symbol.upper()} {source.value}: "
                f"{outcome.reason.value} ({outcome.message})"
            )
            raise ValidationRejectedError(outcome)

        alert = Alert(
            id=self._ids.next_id(),
            symbol=symbol.strip().upper(),
            target_price=outcome.target,
            reference_price=current,
            direction=direction,
            source=source,
            created_at=utc_now(),
        )
        logger.info(f"Alert created: {alert.describe()} (id={alert.id})")
        return alert
