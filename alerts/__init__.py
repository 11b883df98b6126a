"""
Alerts Package - Price-threshold alerts.

Features:
- Validation of proposed alerts against the current price
- Persisted alert store with corrupt-state recovery
- Scheduled monitor that fires each alert exactly once
- Notification sinks, history and toasts

Quick Start:
    from alerts import AlertStore, AlertValidator, AlertMonitor, InMemoryPersistence

    store = AlertStore(InMemoryPersistence())
    alert = AlertValidator().create_alert("2500", current, "above", "ETH", "Spot")
    await store.add(alert)
    result = await AlertMonitor(store, registry).run_cycle()
"""

from alerts.exceptions import (
    AlertError,
    CorruptPersistedStateError,
    DuplicateAlertError,
    NotificationDeliveryError,
    ValidationRejectedError,
)
from alerts.models import (
    Alert,
    AlertDirection,
    CycleResult,
    Notification,
    TriggerEvent,
    triggers,
)
from alerts.monitor import AlertMonitor, MonitorStatus
from alerts.notifications import (
    LoggingNotificationSink,
    NotificationDispatcher,
    NotificationHistory,
    NotificationSink,
    TelegramNotificationSink,
    Toast,
    ToastQueue,
)
from alerts.persistence import (
    InMemoryPersistence,
    JsonFilePersistence,
    PersistencePort,
    SqlPersistence,
)
from alerts.store import AlertStore
from alerts.validator import (
    AlertIdGenerator,
    AlertValidator,
    ValidationOutcome,
    ValidationReason,
    validate,
)


__all__ = [
    # Models
    "Alert",
    "AlertDirection",
    "CycleResult",
    "Notification",
    "TriggerEvent",
    "triggers",

    # Exceptions
    "AlertError",
    "ValidationRejectedError",
    "DuplicateAlertError",
    "CorruptPersistedStateError",
    "NotificationDeliveryError",

    # Validation
    "AlertValidator",
    "AlertIdGenerator",
    "ValidationOutcome",
    "ValidationReason",
    "validate",

    # Persistence
    "PersistencePort",
    "InMemoryPersistence",
    "JsonFilePersistence",
    "SqlPersistence",

    # Store / monitor
    "AlertStore",
    "AlertMonitor",
    "MonitorStatus",

    # Notifications
    "NotificationSink",
    "LoggingNotificationSink",
    "TelegramNotificationSink",
    "NotificationDispatcher",
    "NotificationHistory",
    "Toast",
    "ToastQueue",
]
