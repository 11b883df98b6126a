"""
Core Module - Configuration.

============================================================
RESPONSIBILITY
============================================================
All runtime configuration for the price comparison and alert engine.

- Loads from environment (.env supported)
- Provides defaults for every setting
- Validates values before the engine starts

============================================================
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


DEFAULT_API_BASE_URL = "https://crypto-pricing-forecast-backend.onrender.com"

ALERTS_STORAGE_KEY = "cryptopricer-alerts"
NOTIFICATIONS_STORAGE_KEY = "cryptopricer-notifications"

STORAGE_BACKENDS = ("file", "sql", "memory")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class AppConfig:
    """
    Application configuration.
    """

    # Upstream API
    api_base_url: str = DEFAULT_API_BASE_URL
    """Base URL of the pricing backend."""

    request_timeout_seconds: float = 10.0
    """Total timeout for one HTTP request."""

    max_retries: int = 2
    """Attempts per fetch (server and connection errors only)."""

    # DEX normalization
    dex_notional_input: Decimal = Decimal("10000")
    """USD input amount the DEX quote is requested for."""

    dex_sell_token: str = "USDC"
    """Token sold in the DEX quote."""

    native_asset: str = "ETH"
    """Network-native asset with a fee estimator."""

    gas_units: int = 21000
    """Gas units used for the native fee estimate."""

    native_asset_usd: Decimal = Decimal("4000")
    """USD conversion constant for the native fee estimate."""

    # Alerts
    alert_band_ratio: Decimal = Decimal("0.5")
    """Maximum relative deviation of an alert target from the current price."""

    monitor_interval_seconds: float = 30.0
    """Period of the alert monitoring cycle."""

    fetch_timeout_seconds: float = 15.0
    """Upper bound for one group fetch inside a monitoring cycle."""

    # Persistence
    storage_backend: str = "file"
    """One of: file, sql, memory."""

    storage_path: str = ".cryptopricer"
    """Directory for the file backend."""

    database_url: str = "sqlite:///cryptopricer.db"
    """SQLAlchemy URL for the sql backend."""

    alerts_storage_key: str = ALERTS_STORAGE_KEY
    notifications_storage_key: str = NOTIFICATIONS_STORAGE_KEY

    # Behaviour
    demo_fallback: bool = True
    """Serve demo prices when no live feed answers."""

    # Notifications
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def storage_dir(self) -> Path:
        return Path(self.storage_path)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "AppConfig":
        """Load configuration from environment variables."""
        load_dotenv(env_file)
        return cls(
            api_base_url=os.getenv("PRICE_API_BASE_URL", DEFAULT_API_BASE_URL),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10")),
            max_retries=int(os.getenv("MAX_RETRIES", "2")),
            dex_notional_input=_env_decimal("DEX_NOTIONAL_INPUT", "10000"),
            dex_sell_token=os.getenv("DEX_SELL_TOKEN", "USDC"),
            native_asset=os.getenv("NATIVE_ASSET", "ETH"),
            gas_units=int(os.getenv("GAS_UNITS", "21000")),
            native_asset_usd=_env_decimal("NATIVE_ASSET_USD", "4000"),
            alert_band_ratio=_env_decimal("ALERT_BAND_RATIO", "0.5"),
            monitor_interval_seconds=float(os.getenv("MONITOR_INTERVAL_SECONDS", "30")),
            fetch_timeout_seconds=float(os.getenv("FETCH_TIMEOUT_SECONDS", "15")),
            storage_backend=os.getenv("STORAGE_BACKEND", "file").lower(),
            storage_path=os.getenv("STORAGE_PATH", ".cryptopricer"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///cryptopricer.db"),
            alerts_storage_key=os.getenv("ALERTS_STORAGE_KEY", ALERTS_STORAGE_KEY),
            notifications_storage_key=os.getenv("NOTIFICATIONS_STORAGE_KEY", NOTIFICATIONS_STORAGE_KEY),
            demo_fallback=_env_bool("DEMO_FALLBACK", "true"),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.api_base_url.startswith(("http://", "https://")):
            errors.append("api_base_url must be an http(s) URL")

        if self.request_timeout_seconds <= 0:
            errors.append("request_timeout_seconds must be positive")

        if self.max_retries < 1:
            errors.append("max_retries must be at least 1")

        if self.dex_notional_input <= 0:
            errors.append("dex_notional_input must be positive")

        if self.gas_units <= 0:
            errors.append("gas_units must be positive")

        if self.native_asset_usd <= 0:
            errors.append("native_asset_usd must be positive")

        if not (Decimal("0") < self.alert_band_ratio < Decimal("1")):
            errors.append("alert_band_ratio must be between 0 and 1")

        if self.monitor_interval_seconds <= 0:
            errors.append("monitor_interval_seconds must be positive")

        if self.fetch_timeout_seconds <= 0:
            errors.append("fetch_timeout_seconds must be positive")

        if self.storage_backend not in STORAGE_BACKENDS:
            errors.append(f"storage_backend must be one of {', '.join(STORAGE_BACKENDS)}")

        if self.log_format not in ("text", "json"):
            errors.append("log_format must be 'text' or 'json'")

        return errors
