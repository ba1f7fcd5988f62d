"""Exception types raised at the service boundaries."""

from __future__ import annotations

from typing import Any


class MarketGateError(Exception):
    """Base class for marketgate errors."""


class ProviderNotConfiguredError(MarketGateError):
    """
    Raised when the upstream quote provider has no credential.

    Fatal for the calling path: callers must surface "service unavailable"
    instead of serving fallback prices.
    """

    def __init__(self, provider: str = "finnhub") -> None:
        self.provider = provider
        super().__init__(f"Quote provider '{provider}' is not configured")


class InvalidBatchRequestError(MarketGateError):
    """Raised when an inbound batch request is malformed."""


class RateLimitExceededError(MarketGateError):
    """Raised when an inbound caller exceeds its request tier."""

    def __init__(
        self,
        identifier: str,
        retry_after: float | None = None,
        headers: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.identifier = identifier
        self.retry_after = retry_after
        self.headers = headers or {}
        self.payload = payload or {}
        super().__init__(f"Rate limit exceeded. Retry after: {retry_after}s")
