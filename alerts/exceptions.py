"""
Alerts Module - Exceptions.

============================================================
EXCEPTION HIERARCHY
============================================================
AlertError (base)
├── ValidationRejectedError
├── DuplicateAlertError
├── CorruptPersistedStateError
└── NotificationDeliveryError

None of these is allowed to crash the monitor. Validation rejections
are returned to the caller; everything else is logged.

============================================================
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from alerts.validator import ValidationOutcome


class AlertError(Exception):
    """Base exception for alert errors."""

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


class ValidationRejectedError(AlertError):
    """A proposed alert failed validation and was not created."""

    def __init__(self, outcome: "ValidationOutcome"):
        super().__init__(outcome.message or "Alert rejected")
        self.outcome = outcome


class DuplicateAlertError(AlertError):
    """An alert with the same id is already in the store."""

    def __init__(self, alert_id: int):
        super().__init__(f"Alert {alert_id} already exists")
        self.alert_id = alert_id


class CorruptPersistedStateError(AlertError):
    """Persisted alert state could not be decoded."""

    def __init__(self, key: str, message: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Corrupt persisted state under '{key}': {message}",
            cause=cause,
        )
        self.key = key


class NotificationDeliveryError(AlertError):
    """A notification sink failed to deliver."""

    def __init__(self, sink_name: str, message: str, cause: Optional[Exception] = None):
        super().__init__(
            f"[{sink_name}] {message}",
            cause=cause,
        )
        self.sink_name = sink_name
