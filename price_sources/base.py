"""
Base Price Source - Abstract interface for all upstream price feeds.

All sources MUST implement this interface to ensure:
- Isolation
- Replaceability
- Fail-safety (no exception ever leaves fetch())
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp

from price_sources.exceptions import (
    FetchError,
    NormalizationError,
    PriceSourceError,
    RateLimitError,
)
from price_sources.models import (
    PriceQuote,
    PriceSource,
    SourceHealth,
    SourceIncident,
    SourceStatus,
    utc_now,
)
from price_sources.normalizer import PriceNormalizer


logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://crypto-pricing-forecast-backend.onrender.com"


class BasePriceSource(ABC):
    """
    Abstract base class for all HTTP-backed price feeds.

    Each implementation must:
    1. Implement name - unique identifier
    2. Implement fetch_raw() - get the raw payload from the upstream API

    Features:
    - Retry with exponential backoff on server and connection errors
    - Rate limit handling (Retry-After)
    - Health tracking
    - Incident logging
    """

    DEFAULT_TIMEOUT = 10.0
    MAX_RETRIES = 2
    RETRY_BACKOFF_BASE = 2.0
    DEGRADED_THRESHOLD = 3  # consecutive failures before degraded
    UNAVAILABLE_THRESHOLD = 5  # consecutive failures before unavailable

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._session = session
        self._owns_session = session is None

        # Health tracking
        self._health = SourceHealth(
            status=SourceStatus.UNKNOWN,
            last_check=utc_now(),
        )
        self._request_count = 0
        self._success_count = 0
        self._error_count = 0

        # Incident log
        self._incidents: list[SourceIncident] = []
        self._max_incidents = 100

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this source."""
        pass

    @abstractmethod
    async def fetch_raw(self, symbol: str, **params: Any) -> Any:
        """
        Fetch the raw payload from the upstream API.

        Raises:
            FetchError: If the request fails
        """
        pass

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch_payload(self, symbol: str, **params: Any) -> Optional[Any]:
        """
        Fetch the raw payload with retries and health tracking.

        Returns:
            Decoded payload, or None on any failure (never raises)
        """
        try:
            payload = await self._fetch_with_retry(symbol, **params)
            if payload is None:
                raise NormalizationError(
                    message="Empty response",
                    source_name=self.name,
                )
            self._on_success()
            return payload
        except asyncio.CancelledError:
            raise
        except PriceSourceError as e:
            self._on_error(e, symbol)
            return None
        except Exception as e:
            error = PriceSourceError(
                message=f"Unexpected error: {e}",
                source_name=self.name,
                original_error=e,
            )
            self._on_error(error, symbol)
            return None

    async def _fetch_with_retry(self, symbol: str, **params: Any) -> Any:
        """Fetch with exponential backoff retry."""
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            is_last = attempt == self._max_retries - 1
            try:
                return await self.fetch_raw(symbol, **params)

            except RateLimitError as e:
                last_error = e
                if is_last:
                    break
                wait_time = e.retry_after_seconds or (self.RETRY_BACKOFF_BASE ** attempt)
                logger.warning(
                    f"[{self.name}] Rate limited, waiting {wait_time}s "
                    f"(attempt {attempt + 1}/{self._max_retries})"
                )
                await asyncio.sleep(wait_time)

            except FetchError as e:
                if not (e.is_server_error() or e.is_connection_error()):
                    # Don't retry client errors
                    raise
                last_error = e
                if is_last:
                    break
                wait_time = self.RETRY_BACKOFF_BASE ** attempt
                logger.warning(
                    f"[{self.name}] {e.message}, retrying in {wait_time}s "
                    f"(attempt {attempt + 1}/{self._max_retries})"
                )
                await asyncio.sleep(wait_time)

        raise FetchError(
            message=f"Failed after {self._max_retries} attempt(s)",
            source_name=self.name,
            original_error=last_error,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        """Get default HTTP headers."""
        return {
            "Accept": "application/json",
            "User-Agent": "CryptoPricer/1.0",
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Make HTTP request with error handling."""
        session = await self._get_session()

        start_time = time.time()
        try:
            async with session.request(method, url, params=params) as response:
                latency_ms = (time.time() - start_time) * 1000
                self._health.latency_ms = latency_ms

                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        message="Rate limit exceeded",
                        source_name=self.name,
                        retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise FetchError(
                        message=f"HTTP {response.status}: {body[:200]}",
                        source_name=self.name,
                        status_code=response.status,
                        request_url=url,
                    )

                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise NormalizationError(
                        message=f"Invalid JSON: {e}",
                        source_name=self.name,
                        original_error=e,
                    )
                logger.debug(f"[{self.name}] Request completed in {latency_ms:.1f}ms")
                return data

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(
                message=f"Connection error: {e!r}",
                source_name=self.name,
                request_url=url,
                original_error=e,
            )

    def _on_success(self) -> None:
        """Handle successful request."""
        self._request_count += 1
        self._success_count += 1
        self._health.last_check = utc_now()
        self._health.consecutive_failures = 0

        if self._health.status != SourceStatus.HEALTHY:
            if self._health.status != SourceStatus.UNKNOWN:
                logger.info(f"[{self.name}] Recovered to HEALTHY status")
            self._health.status = SourceStatus.HEALTHY

    def _on_error(self, error: PriceSourceError, symbol: Optional[str] = None) -> None:
        """Handle request error."""
        self._request_count += 1
        self._error_count += 1
        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = utc_now()
        self._health.last_check = self._health.last_error_time

        if self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if self._health.status != SourceStatus.UNAVAILABLE:
                self._health.status = SourceStatus.UNAVAILABLE
                logger.error(
                    f"[{self.name}] Marked UNAVAILABLE after "
                    f"{self._health.consecutive_failures} failures"
                )
        elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if self._health.status != SourceStatus.DEGRADED:
                self._health.status = SourceStatus.DEGRADED
                logger.warning(
                    f"[{self.name}] Marked DEGRADED after "
                    f"{self._health.consecutive_failures} failures"
                )

        self._log_incident(error, symbol)

    def _log_incident(self, error: PriceSourceError, symbol: Optional[str] = None) -> None:
        """Log an incident."""
        self._incidents.append(SourceIncident(
            source_name=self.name,
            incident_type=error.__class__.__name__,
            timestamp=utc_now(),
            error_message=str(error),
            symbol=symbol,
        ))

        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]

        logger.warning(f"[{self.name}] Incident logged: {error}")

    def get_health(self) -> SourceHealth:
        """Get current health status."""
        if self._request_count > 0:
            self._health.uptime_percentage = (
                self._success_count / self._request_count * 100
            )
        return self._health

    def get_incidents(self, limit: int = 10) -> list[SourceIncident]:
        """Get recent incidents."""
        return self._incidents[-limit:]

    def is_usable(self) -> bool:
        """Check if source can be used."""
        return self._health.is_usable()

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BasePriceSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, status={self._health.status.value})>"


class BaseQuoteSource(BasePriceSource):
    """
    A price source that produces a PriceQuote for one PriceSource.

    fetch() always returns a quote; an unusable upstream response yields a
    quote whose value is None.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        normalizer: Optional[PriceNormalizer] = None,
        timeout: float = BasePriceSource.DEFAULT_TIMEOUT,
        max_retries: int = BasePriceSource.MAX_RETRIES,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(base_url, timeout, max_retries, session)
        self._normalizer = normalizer or PriceNormalizer()

    @property
    @abstractmethod
    def price_source(self) -> PriceSource:
        """Which pricing source this feed represents."""
        pass

    @property
    def name(self) -> str:
        return self.price_source.value.lower()

    def normalize(self, raw: Any, symbol: str) -> PriceQuote:
        """Normalize a raw payload into a quote."""
        return self._normalizer.normalize(self.price_source, raw, symbol)

    async def fetch(self, symbol: str, with_fee: bool = True) -> PriceQuote:
        """
        Fetch and normalize a quote (main entry point).

        Args:
            symbol: Asset symbol
            with_fee: Also fetch auxiliary fee data, for sources that have any

        Note:
            Never raises - returns an unavailable quote on failure
        """
        payload = await self.fetch_payload(symbol)
        if payload is None:
            return PriceQuote.unavailable(self.price_source, symbol)

        quote = self.normalize(payload, symbol)
        if not quote.is_available:
            logger.warning(f"[{self.name}] Unusable payload for {symbol.upper()}")
        return quote
