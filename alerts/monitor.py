"""
Alerts Module - Alert Monitor.

============================================================
PURPOSE
============================================================
Polls live prices on a schedule and fires each alert at most once.

CYCLE:
1. Snapshot the store (empty -> no fetches at all)
2. Group alerts by (symbol, source)
3. One fetch per group, all groups concurrently, each bounded by a timeout
4. Unavailable quote, error or timeout -> skip that group only
5. Inclusive trigger check against the group's own price
6. Per trigger: remove from store, then notify, then toast

STATES:
- IDLE: waiting for the next cycle (or never started)
- POLLING: a cycle is in progress
- STOPPED: stop() was called, no further cycles

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Protocol, Tuple

from price_sources.models import PriceQuote, PriceSource, utc_now

from .models import Alert, CycleResult, GroupKey, TriggerEvent, triggers
from .notifications import NotificationDispatcher, ToastQueue
from .store import AlertStore


logger = logging.getLogger(__name__)


DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 15.0


class QuoteProvider(Protocol):
    async def fetch_quote(self, symbol: str, source: PriceSource) -> PriceQuote:
        ...


class MonitorStatus(Enum):
    """Alert monitor lifecycle state."""

    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


class AlertMonitor:
    """
    Scheduled alert evaluation.

    Runs as a background task. Cycles never overlap: scheduled cycles
    and manual refresh() calls are serialized by one lock.
    """

    def __init__(
        self,
        store: AlertStore,
        quotes: QuoteProvider,
        dispatcher: Optional[NotificationDispatcher] = None,
        toasts: Optional[ToastQueue] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ):
        self._store = store
        self._quotes = quotes
        self._dispatcher = dispatcher if dispatcher is not None else NotificationDispatcher()
        self._toasts = toasts
        self._interval = interval_seconds
        self._fetch_timeout = fetch_timeout_seconds

        self._status = MonitorStatus.IDLE
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._cycle_lock = asyncio.Lock()
        self._last_result: Optional[CycleResult] = None
        self._cycle_count = 0

    @property
    def status(self) -> MonitorStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> Optional[CycleResult]:
        return self._last_result

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def interval_seconds(self) -> float:
        return self._interval

    # ------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------

    async def start(self) -> None:
        """Start scheduled cycles. The first cycle runs one interval from now."""
        if self._running:
            return

        self._running = True
        self._status = MonitorStatus.IDLE
        self._task = asyncio.create_task(self._run())
        logger.info(f"Alert monitor started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop scheduled cycles and wait for the task to finish."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._status = MonitorStatus.STOPPED
        logger.info("Alert monitor stopped")

    async def refresh(self) -> CycleResult:
        """Run one cycle now, outside the schedule."""
        logger.info("Manual alert refresh requested")
        return await self.run_cycle()

    async def _run(self) -> None:
        """Main run loop."""
        while self._running:
            await asyncio.sleep(self._interval)
            if not self._running:
                break
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Alert monitoring cycle error: {e}", exc_info=True)

    # ------------------------------------------------------------
    # CYCLE
    # ------------------------------------------------------------

    async def run_cycle(self) -> CycleResult:
        """Evaluate every active alert once."""
        async with self._cycle_lock:
            resting = MonitorStatus.STOPPED if self._status == MonitorStatus.STOPPED else MonitorStatus.IDLE
            self._status = MonitorStatus.POLLING
            try:
                result = await self._evaluate()
            finally:
                if self._status == MonitorStatus.POLLING:
                    self._status = resting

            self._cycle_count += 1
            self._last_result = result
            return result

    async def _evaluate(self) -> CycleResult:
        started_at = utc_now()
        alerts = self._store.list()
        if not alerts:
            logger.debug("No active alerts, nothing to fetch")
            return CycleResult.empty(started_at)

        groups = self._group(alerts)
        keys = list(groups.keys())
        prices = await asyncio.gather(*(self._fetch_group(key) for key in keys))

        triggered: List[TriggerEvent] = []
        skipped = 0
        failed = 0

        for key, (price, errored) in zip(keys, prices):
            if price is None:
                if errored:
                    failed += 1
                else:
                    skipped += 1
                continue
            for alert in groups[key]:
                if triggers(alert, price):
                    triggered.append(TriggerEvent(alert=alert, price=price))

        fired = []
        for event in triggered:
            if await self._fire(event):
                fired.append(event)

        result = CycleResult(
            started_at=started_at,
            finished_at=utc_now(),
            groups=len(keys),
            fetches=len(keys),
            skipped_groups=skipped,
            failed_groups=failed,
            triggered=tuple(fired),
        )

        logger.info(
            f"Alert cycle complete: {len(alerts)} alert(s), {result.groups} group(s), "
            f"{len(fired)} triggered, {skipped} skipped, {failed} failed "
            f"({result.duration_ms:.0f}ms)"
        )
        return result

    @staticmethod
    def _group(alerts: Tuple[Alert, ...]) -> Dict[GroupKey, List[Alert]]:
        groups: Dict[GroupKey, List[Alert]] = {}
        for alert in alerts:
            groups.setdefault(alert.group_key, []).append(alert)
        return groups

    async def _fetch_group(self, key: GroupKey) -> Tuple[Optional[Decimal], bool]:
        """
        Fetch the price for one group.

        Returns:
            (price or None, whether the fetch errored)
        """
        symbol, source = key
        try:
            quote = await asyncio.wait_for(
                self._quotes.fetch_quote(symbol, source),
                timeout=self._fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Skipping {symbol} {source.value}: fetch timed out after {self._fetch_timeout}s")
            return None, True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Skipping {symbol} {source.value}: fetch failed: {e}")
            return None, True

        if quote is None or not quote.is_available:
            logger.warning(f"Skipping {symbol} {source.value}: price unavailable")
            return None, False

        return quote.value, False

    async def _fire(self, event: TriggerEvent) -> bool:
        """Remove, notify, toast. Returns False if the alert was already gone."""
        alert = event.alert
        removed = await self._store.remove(alert.id)
        if not removed:
            logger.info(f"Alert {alert.id} already removed, not notifying")
            return False

        logger.info(
            f"Alert triggered: {alert.describe()} at ${event.price:.2f} (id={alert.id})"
        )

        try:
            await self._dispatcher.dispatch(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Notification dispatch failed for alert {alert.id}: {e}")

        if self._toasts is not None:
            self._toasts.show_triggered(event)

        return True
