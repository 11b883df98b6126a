"""
Core Module - Runtime Wiring.

============================================================
RESPONSIBILITY
============================================================
Builds the object graph from AppConfig.

- Persistence backend (file, sql, memory)
- Price source registry
- Alert validator, store, monitor
- Notification sinks, history, toasts

============================================================
"""

import logging
from dataclasses import dataclass
from typing import Optional

from alerts.monitor import AlertMonitor
from alerts.notifications import (
    LoggingNotificationSink,
    NotificationDispatcher,
    NotificationHistory,
    TelegramNotificationSink,
    ToastQueue,
)
from alerts.persistence import (
    InMemoryPersistence,
    JsonFilePersistence,
    PersistencePort,
    SqlPersistence,
)
from alerts.store import AlertStore
from alerts.validator import AlertIdGenerator, AlertValidator
from database.engine import create_database_engine
from price_sources.registry import PriceSourceRegistry, create_registry

from .config import AppConfig


logger = logging.getLogger(__name__)


def build_persistence(config: AppConfig) -> PersistencePort:
    """Create the configured persistence backend."""
    backend = config.storage_backend
    if backend == "memory":
        logger.warning("Using in-memory storage, alerts will not survive a restart")
        return InMemoryPersistence()
    if backend == "sql":
        return SqlPersistence(create_database_engine(config.database_url))
    if backend == "file":
        return JsonFilePersistence(config.storage_dir)
    raise ValueError(f"Unknown storage backend: {backend}")


@dataclass
class Services:
    """Everything the entrypoint needs, wired together."""

    config: AppConfig
    persistence: PersistencePort
    registry: PriceSourceRegistry
    validator: AlertValidator
    store: AlertStore
    history: NotificationHistory
    dispatcher: NotificationDispatcher
    toasts: ToastQueue
    monitor: AlertMonitor

    async def restore(self) -> None:
        """
        Prepare storage, then load persisted alerts and notification history.

        Raises:
            Exception: If the storage backend cannot be initialized
        """
        await self.persistence.initialize()
        await self.store.restore()
        await self.history.restore()

    async def close(self) -> None:
        """Stop the monitor and release network and storage resources."""
        if self.monitor.is_running:
            await self.monitor.stop()
        await self.registry.close()
        await self.dispatcher.close()
        await self.persistence.close()


def build_services(
    config: AppConfig,
    persistence: Optional[PersistencePort] = None,
    registry: Optional[PriceSourceRegistry] = None,
) -> Services:
    """
    Wire all services from configuration.

    Args:
        config: Application configuration
        persistence: Override the configured backend
        registry: Override the live price registry
    """
    if persistence is None:
        persistence = build_persistence(config)
    if registry is None:
        registry = create_registry(config)

    ids = AlertIdGenerator()
    validator = AlertValidator(band_ratio=config.alert_band_ratio, id_generator=ids)
    store = AlertStore(persistence, storage_key=config.alerts_storage_key, id_generator=ids)

    history = NotificationHistory(persistence, storage_key=config.notifications_storage_key)
    dispatcher = NotificationDispatcher(sinks=[LoggingNotificationSink()], history=history)
    if config.telegram_enabled:
        dispatcher.add_sink(TelegramNotificationSink(
            bot_token=config.telegram_bot_token,
            chat_ids=[c.strip() for c in config.telegram_chat_id.split(",") if c.strip()],
        ))

    toasts = ToastQueue()
    monitor = AlertMonitor(
        store=store,
        quotes=registry,
        dispatcher=dispatcher,
        toasts=toasts,
        interval_seconds=config.monitor_interval_seconds,
        fetch_timeout_seconds=config.fetch_timeout_seconds,
    )

    return Services(
        config=config,
        persistence=persistence,
        registry=registry,
        validator=validator,
        store=store,
        history=history,
        dispatcher=dispatcher,
        toasts=toasts,
        monitor=monitor,
    )
