"""
Price Source Exceptions - Errors raised while talking to upstream feeds.

Raised inside sources only. The public fetch path turns every one of
them into an unavailable quote and a logged incident.
"""

from typing import Optional


class PriceSourceError(Exception):
    """Base exception for all price source errors."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source_name = source_name
        self.original_error = original_error

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.source_name:
            parts.append(f"[source={self.source_name}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class FetchError(PriceSourceError):
    """HTTP or connection failure. A missing status code means the request never got a response."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        status_code: Optional[int] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, source_name, original_error)
        self.status_code = status_code
        self.request_url = request_url

    def is_server_error(self) -> bool:
        return self.status_code is not None and 500 <= self.status_code < 600

    def is_connection_error(self) -> bool:
        return self.status_code is None

    def __str__(self) -> str:
        text = super().__str__()
        if self.request_url:
            text += f" <{self.request_url}>"
        return text


class RateLimitError(FetchError):
    """HTTP 429, optionally with the server's Retry-After hint."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
    ) -> None:
        super().__init__(message, source_name, status_code=429)
        self.retry_after_seconds = retry_after_seconds


class NormalizationError(PriceSourceError):
    """Upstream payload is empty or not valid JSON."""
