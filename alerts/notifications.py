"""
Alerts Module - Notifications.

============================================================
PURPOSE
============================================================
Best-effort delivery of alert triggers.

- NotificationSink: delivery interface (logging, Telegram)
- NotificationDispatcher: fans a trigger out to every sink
- NotificationHistory: last N notifications, persisted
- ToastQueue: short-lived in-app messages with auto-dismiss

PRINCIPLES:
- A failing sink never affects other sinks
- A failed delivery never re-triggers or restores an alert
- Rate limiting to prevent spam

============================================================
"""

import asyncio
import html
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

import aiohttp

from .exceptions import NotificationDeliveryError
from .models import Notification, TriggerEvent, format_amount
from .persistence import PersistencePort


logger = logging.getLogger(__name__)


DEFAULT_HISTORY_KEY = "cryptopricer-notifications"
MAX_HISTORY_ENTRIES = 50

CREATION_TOAST_SECONDS = 3.0
TRIGGER_TOAST_SECONDS = 5.0


# ============================================================
# SINKS
# ============================================================

class NotificationSink(ABC):
    """Delivery target for alert notifications."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def deliver(self, notification: Notification, event: Optional[TriggerEvent] = None) -> None:
        """
        Deliver one notification.

        Raises:
            NotificationDeliveryError: If delivery failed
        """
        pass

    async def close(self) -> None:
        return None


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the application log."""

    def __init__(self, level: int = logging.INFO):
        self._level = level

    @property
    def name(self) -> str:
        return "log"

    async def deliver(self, notification: Notification, event: Optional[TriggerEvent] = None) -> None:
        logger.log(self._level, f"NOTIFICATION | {notification.title} | {notification.body}")


# ============================================================
# TELEGRAM
# ============================================================

class TelegramFormatter:
    """
    Formats triggers for Telegram.

    Uses HTML formatting for clarity.
    """

    DIRECTION_ICONS = {
        "above": "📈",
        "below": "📉",
    }

    @classmethod
    def format_trigger(cls, event: TriggerEvent) -> str:
        """Format a trigger event."""
        alert = event.alert
        icon = cls.DIRECTION_ICONS.get(alert.direction.value, "🎯")
        notification = event.notification()
        time_str = event.triggered_at.strftime("%Y-%m-%d %H:%M:%S UTC")

        lines = [
            f"{icon} <b>{html.escape(notification.title)}</b>",
            "",
            html.escape(notification.body),
            "",
            f"• <code>target</code>: ${format_amount(alert.target_price)}",
            f"• <code>price</code>: ${event.price:.2f}",
            f"• <code>set at</code>: ${alert.reference_price:.2f}",
            f"🕐 {time_str}",
        ]
        return "\n".join(lines)

    @classmethod
    def format_notification(cls, notification: Notification) -> str:
        """Format a bare notification."""
        return f"🎯 <b>{html.escape(notification.title)}</b>\n\n{html.escape(notification.body)}"


class TelegramRateLimiter:
    """
    Rate limiter for Telegram messages.

    Prevents excessive message sending.
    """

    def __init__(
        self,
        max_per_minute: int = 20,
        max_per_hour: int = 100,
    ):
        self._max_per_minute = max_per_minute
        self._max_per_hour = max_per_hour
        self._minute_window: List[datetime] = []
        self._hour_window: List[datetime] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> bool:
        """Try to acquire a send slot."""
        async with self._lock:
            now = datetime.now(timezone.utc)

            minute_ago = now - timedelta(minutes=1)
            hour_ago = now - timedelta(hours=1)

            self._minute_window = [t for t in self._minute_window if t > minute_ago]
            self._hour_window = [t for t in self._hour_window if t > hour_ago]

            if len(self._minute_window) >= self._max_per_minute:
                return False
            if len(self._hour_window) >= self._max_per_hour:
                return False

            self._minute_window.append(now)
            self._hour_window.append(now)

            return True

    @property
    def remaining_minute(self) -> int:
        """Remaining sends in current minute."""
        minute_ago = datetime.now(timezone.utc) - timedelta(minutes=1)
        count = sum(1 for t in self._minute_window if t > minute_ago)
        return max(0, self._max_per_minute - count)


class TelegramNotificationSink(NotificationSink):
    """
    Sends notifications to Telegram chats.

    Notification-only client, no commands are processed.
    """

    BASE_URL = "https://api.telegram.org/bot"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_ids: Optional[List[str]] = None,
        rate_limiter: Optional[TelegramRateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize Telegram sink.

        Args:
            bot_token: Telegram bot token (default TELEGRAM_BOT_TOKEN)
            chat_ids: Chat IDs to send to (default TELEGRAM_CHAT_ID, comma-separated)
            rate_limiter: Optional rate limiter
            session: Optional shared HTTP session
        """
        self._bot_token = bot_token or os.getenv("TELEGRAM_BOT_TOKEN", "")

        if chat_ids:
            self._chat_ids = list(chat_ids)
        else:
            env_chat_ids = os.getenv("TELEGRAM_CHAT_ID", "")
            self._chat_ids = [c.strip() for c in env_chat_ids.split(",") if c.strip()]

        self._rate_limiter = rate_limiter or TelegramRateLimiter()
        self._session = session
        self._owns_session = session is None

        if self.is_configured:
            logger.info(f"Telegram sink enabled with {len(self._chat_ids)} chat(s)")
        else:
            logger.warning("Telegram sink NOT configured - check TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID")

    @property
    def name(self) -> str:
        return "telegram"

    @property
    def is_configured(self) -> bool:
        return bool(self._bot_token and self._chat_ids)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def deliver(self, notification: Notification, event: Optional[TriggerEvent] = None) -> None:
        if not self.is_configured:
            raise NotificationDeliveryError(self.name, "not configured")

        if not await self._rate_limiter.acquire():
            raise NotificationDeliveryError(self.name, "rate limit reached, message not sent")

        if event is not None:
            message = TelegramFormatter.format_trigger(event)
        else:
            message = TelegramFormatter.format_notification(notification)

        failed = []
        for chat_id in self._chat_ids:
            if not await self._send_message(chat_id, message):
                failed.append(chat_id)

        if failed:
            raise NotificationDeliveryError(
                self.name, f"delivery failed for {len(failed)}/{len(self._chat_ids)} chat(s)"
            )

    async def _send_message(
        self,
        chat_id: str,
        message: str,
        parse_mode: str = "HTML",
    ) -> bool:
        """Send message to a specific chat."""
        try:
            session = await self._get_session()
            url = f"{self.BASE_URL}{self._bot_token}/sendMessage"
            payload = {
                "chat_id": chat_id,
                "text": message,
                "parse_mode": parse_mode,
                "disable_web_page_preview": True,
            }

            async with session.post(url, json=payload) as response:
                if response.status == 200:
                    return True
                body = await response.text()
                logger.error(f"Telegram API error: {response.status} - {body[:200]}")
                return False

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error sending Telegram message: {e!r}")
            return False


# ============================================================
# NOTIFICATION HISTORY
# ============================================================

class NotificationHistory:
    """
    Most recent notifications, newest first, persisted under one key.
    """

    def __init__(
        self,
        persistence: PersistencePort,
        storage_key: str = DEFAULT_HISTORY_KEY,
        max_entries: int = MAX_HISTORY_ENTRIES,
    ):
        self._persistence = persistence
        self._storage_key = storage_key
        self._max_entries = max_entries
        self._entries: Tuple[Notification, ...] = ()
        self._lock = asyncio.Lock()

    def entries(self) -> Tuple[Notification, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def record(self, notification: Notification) -> None:
        """Prepend a notification, trimming to the maximum."""
        self._entries = ((notification,) + self._entries)[:self._max_entries]
        await self._persist()

    async def clear(self) -> None:
        self._entries = ()
        await self._persist()

    async def restore(self) -> Tuple[Notification, ...]:
        """Load history. Never raises; corrupt state yields empty history."""
        try:
            blob = await self._persistence.read(self._storage_key)
            if not blob:
                self._entries = ()
                return self._entries
            data = json.loads(blob)
            if not isinstance(data, list):
                raise ValueError(f"expected a list, got {type(data).__name__}")
            entries = []
            for record in data[:self._max_entries]:
                try:
                    entries.append(Notification.from_dict(record))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed notification record: {e!r}")
            self._entries = tuple(entries)
        except Exception as e:
            logger.error(f"Failed to restore notification history: {e}")
            self._entries = ()
        return self._entries

    async def _persist(self) -> None:
        async with self._lock:
            entries = self._entries
            try:
                blob = json.dumps([n.to_dict() for n in entries])
                await self._persistence.write(self._storage_key, blob)
            except Exception as e:
                logger.error(f"Failed to persist notification history: {e}")


# ============================================================
# DISPATCHER
# ============================================================

class NotificationDispatcher:
    """
    Dispatches trigger notifications to all sinks.

    Never raises. Each sink failure is logged and the remaining sinks
    still receive the notification.
    """

    def __init__(
        self,
        sinks: Optional[List[NotificationSink]] = None,
        history: Optional[NotificationHistory] = None,
    ):
        self._sinks: List[NotificationSink] = list(sinks or [])
        self._history = history

    @property
    def sinks(self) -> List[NotificationSink]:
        return list(self._sinks)

    @property
    def history(self) -> Optional[NotificationHistory]:
        return self._history

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    async def dispatch(self, event: TriggerEvent) -> int:
        """
        Deliver the trigger's notification.

        Returns:
            Number of sinks that delivered successfully
        """
        notification = event.notification()
        delivered = 0

        for sink in self._sinks:
            try:
                await sink.deliver(notification, event)
                delivered += 1
            except asyncio.CancelledError:
                raise
            except NotificationDeliveryError as e:
                logger.warning(f"Notification not delivered: {e}")
            except Exception as e:
                logger.error(f"Notification sink '{sink.name}' error: {e}")

        if self._history is not None:
            await self._history.record(notification)

        return delivered

    async def close(self) -> None:
        for sink in self._sinks:
            await sink.close()


# ============================================================
# TOASTS
# ============================================================

@dataclass(frozen=True)
class Toast:
    """Transient in-app message."""

    message: str
    kind: str
    duration_seconds: float
    shown_at: float = field(default_factory=time.monotonic)

    def expires_at(self) -> float:
        return self.shown_at + self.duration_seconds

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.monotonic()) >= self.expires_at()


ToastListener = Callable[[Toast], None]


class ToastQueue:
    """
    Active toasts with auto-dismiss on expiry.

    Expired toasts are dropped whenever active() is read.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._toasts: Tuple[Toast, ...] = ()
        self._listeners: List[ToastListener] = []

    def register_listener(self, listener: ToastListener) -> None:
        """Called synchronously for each toast shown."""
        self._listeners.append(listener)

    def show(self, message: str, duration_seconds: float, kind: str = "info") -> Toast:
        now = self._clock()
        toast = Toast(
            message=message,
            kind=kind,
            duration_seconds=duration_seconds,
            shown_at=now,
        )
        self._toasts = self._prune(now) + (toast,)
        for listener in self._listeners:
            try:
                listener(toast)
            except Exception as e:
                logger.error(f"Toast listener error: {e}")
        return toast

    def show_created(self, message: str) -> Toast:
        return self.show(message, CREATION_TOAST_SECONDS, kind="success")

    def show_triggered(self, event: TriggerEvent) -> Toast:
        return self.show(event.toast_message(), TRIGGER_TOAST_SECONDS, kind="alert")

    def active(self) -> Tuple[Toast, ...]:
        self._toasts = self._prune(self._clock())
        return self._toasts

    def __len__(self) -> int:
        return len(self._toasts)

    def _prune(self, now: float) -> Tuple[Toast, ...]:
        return tuple(t for t in self._toasts if not t.is_expired(now))

    def dismiss(self, toast: Toast) -> None:
        self._toasts = tuple(t for t in self._toasts if t is not toast)
