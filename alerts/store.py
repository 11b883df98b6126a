"""
Alerts Module - Alert Store.

============================================================
RESPONSIBILITY
============================================================
Sole owner of the active alert collection.

- Holds an immutable tuple of alerts, swapped on every mutation
- Persists the current snapshot after every mutation
- Restores from persistence, degrading corrupt state to empty
- Notifies listeners with each new snapshot

============================================================
CONCURRENCY
============================================================
Each mutation builds the new tuple and swaps the reference
without suspending in between, so two interleaved mutations can
never lose each other's change. Persistence writes are serialized
by a lock and always write the snapshot current at write time, so
a slow earlier write can never overwrite a later state.

============================================================
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from .exceptions import CorruptPersistedStateError, DuplicateAlertError
from .models import Alert
from .persistence import PersistencePort
from .validator import AlertIdGenerator


logger = logging.getLogger(__name__)


DEFAULT_STORAGE_KEY = "cryptopricer-alerts"

StoreListener = Callable[[Tuple[Alert, ...]], Awaitable[None]]


class AlertStore:
    """
    Active alert collection with persist-on-mutation.

    Usage:
        store = AlertStore(JsonFilePersistence(".cryptopricer"))
        await store.restore()
        await store.add(alert)
        await store.remove(alert.id)
    """

    def __init__(
        self,
        persistence: PersistencePort,
        storage_key: str = DEFAULT_STORAGE_KEY,
        id_generator: Optional[AlertIdGenerator] = None,
    ):
        self._persistence = persistence
        self._storage_key = storage_key
        self._id_generator = id_generator
        self._alerts: Tuple[Alert, ...] = ()
        self._listeners: List[StoreListener] = []
        self._write_lock = asyncio.Lock()

    @property
    def storage_key(self) -> str:
        return self._storage_key

    def list(self) -> Tuple[Alert, ...]:
        """Current snapshot in creation order."""
        return self._alerts

    def get(self, alert_id: int) -> Optional[Alert]:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None

    def __len__(self) -> int:
        return len(self._alerts)

    def __contains__(self, alert_id: object) -> bool:
        return any(alert.id == alert_id for alert in self._alerts)

    # ------------------------------------------------------------
    # MUTATIONS
    # ------------------------------------------------------------

    async def add(self, alert: Alert) -> None:
        """
        Add an alert.

        Raises:
            DuplicateAlertError: If an alert with the same id is present
        """
        if alert.id in self:
            raise DuplicateAlertError(alert.id)

        self._alerts = self._alerts + (alert,)
        if self._id_generator is not None:
            self._id_generator.observe(alert.id)
        logger.info(f"Alert added: {alert.describe()} (id={alert.id}, active={len(self._alerts)})")

        await self._on_change()

    async def remove(self, alert_id: int) -> bool:
        """
        Remove an alert by id.

        Returns:
            True if removed, False if no such alert (no-op)
        """
        remaining = tuple(a for a in self._alerts if a.id != alert_id)
        if len(remaining) == len(self._alerts):
            return False

        self._alerts = remaining
        logger.info(f"Alert removed: id={alert_id} (active={len(remaining)})")

        await self._on_change()
        return True

    # ------------------------------------------------------------
    # RESTORE
    # ------------------------------------------------------------

    async def restore(self) -> Tuple[Alert, ...]:
        """
        Load alerts from persistence, replacing the current snapshot.

        Never raises. Missing or corrupt state yields an empty store.
        """
        try:
            blob = await self._persistence.read(self._storage_key)
        except Exception as e:
            logger.error(f"Failed to read persisted alerts: {e}")
            blob = None

        alerts = self.restore_from_blob(blob, self._storage_key)
        self._alerts = alerts
        if self._id_generator is not None:
            for alert in alerts:
                self._id_generator.observe(alert.id)

        logger.info(f"Alert store restored: {len(alerts)} active alert(s)")
        return alerts

    @staticmethod
    def restore_from_blob(blob: Optional[str], storage_key: str = DEFAULT_STORAGE_KEY) -> Tuple[Alert, ...]:
        """
        Decode a persisted blob.

        Malformed records are skipped; duplicate ids keep the first record.
        """
        if blob is None or not blob.strip():
            return ()

        try:
            data = json.loads(blob)
        except (ValueError, RecursionError) as e:
            error = CorruptPersistedStateError(storage_key, "invalid JSON", cause=e)
            logger.error(f"{error}, starting empty")
            return ()

        if not isinstance(data, list):
            error = CorruptPersistedStateError(
                storage_key, f"expected a list, got {type(data).__name__}"
            )
            logger.error(f"{error}, starting empty")
            return ()

        alerts = []
        seen = set()
        for index, record in enumerate(data):
            try:
                alert = Alert.from_dict(record)
            except (KeyError, TypeError, ValueError, OverflowError) as e:
                logger.warning(f"Skipping malformed alert record #{index}: {e!r}")
                continue
            if alert.id in seen:
                logger.warning(f"Skipping duplicate alert id {alert.id}")
                continue
            seen.add(alert.id)
            alerts.append(alert)

        return tuple(alerts)

    # ------------------------------------------------------------
    # LISTENERS / PERSISTENCE
    # ------------------------------------------------------------

    def register_listener(self, listener: StoreListener) -> None:
        """Register a snapshot change listener."""
        self._listeners.append(listener)

    def unregister_listener(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _on_change(self) -> None:
        snapshot = self._alerts
        await self._persist()
        for listener in self._listeners:
            try:
                await listener(snapshot)
            except Exception as e:
                logger.error(f"Alert store listener error: {e}", exc_info=True)

    async def _persist(self) -> None:
        """Write the current snapshot. Failures are logged, never raised."""
        async with self._write_lock:
            snapshot = self._alerts
            try:
                blob = json.dumps([alert.to_dict() for alert in snapshot])
                await self._persistence.write(self._storage_key, blob)
            except Exception as e:
                logger.error(f"Failed to persist {len(snapshot)} alert(s): {e}")
