"""
MarketGate API Client
Synchronous HTTP client for the quote and rate limit endpoints.
"""

from __future__ import annotations

import os
from typing import Optional

import httpx

from .models import Quote, RateLimitStatus


class MarketGateError(Exception):
    """Raised when the API answers with an error body."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class MarketGateClient:
    """
    Python client for the MarketGate API.

    Example:
        ```python
        with MarketGateClient() as client:
            for quote in client.get_quotes(["AAPL", "MSFT"]):
                print(quote.symbol, quote.price, quote.provenance)

            status = client.check_rate_limit("user@example.com")
            if not status.allowed:
                print(status.message)
        ```
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the MarketGate client.

        Args:
            base_url: API server URL (default: MARKETGATE_URL or localhost:8000)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (e.g. MockTransport in tests)
        """
        self.base_url = (base_url or os.getenv("MARKETGATE_URL") or "http://localhost:8000").rstrip("/")
        self.timeout = timeout

        self._client = httpx.Client(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> MarketGateClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def _raise_for_error(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            message = response.json().get("error", response.text)
        except ValueError:
            message = response.text
        raise MarketGateError(response.status_code, message)

    # =========================================================================
    # Health
    # =========================================================================

    def health(self) -> dict:
        """Check API health status."""
        response = self._client.get("/health")
        self._raise_for_error(response)
        return response.json()

    def is_healthy(self) -> bool:
        """Quick health check returning boolean."""
        try:
            return self.health().get("status") == "healthy"
        except (httpx.HTTPError, MarketGateError):
            return False

    # =========================================================================
    # Quotes
    # =========================================================================

    def get_quotes(self, symbols: list[str]) -> list[Quote]:
        """
        Get quotes for symbols, in the order given.

        Raises:
            MarketGateError: On 400 (bad batch), 429 (client over budget)
                or 503 (provider not configured)
        """
        response = self._client.post("/v1/quotes", json={"symbols": symbols})
        self._raise_for_error(response)
        return [Quote.from_dict(item) for item in response.json()]

    # =========================================================================
    # Rate limiting
    # =========================================================================

    def _rate_limit_body(
        self,
        identifier: str,
        max_attempts: Optional[int],
        window_ms: Optional[int],
        lockout_ms: Optional[int] = None,
    ) -> dict:
        body: dict = {"identifier": identifier}
        if max_attempts is not None:
            body["maxAttempts"] = max_attempts
        if window_ms is not None:
            body["windowMs"] = window_ms
        if lockout_ms is not None:
            body["lockoutMs"] = lockout_ms
        return body

    def check_rate_limit(
        self,
        identifier: str,
        max_attempts: Optional[int] = None,
        window_ms: Optional[int] = None,
    ) -> RateLimitStatus:
        """Check an identifier. A lockout is returned as a status, not raised."""
        response = self._client.post(
            "/v1/rate-limit/check",
            json=self._rate_limit_body(identifier, max_attempts, window_ms),
        )
        if response.status_code != 429:
            self._raise_for_error(response)
        return RateLimitStatus.from_dict(response.json())

    def record_failure(
        self,
        identifier: str,
        max_attempts: Optional[int] = None,
        window_ms: Optional[int] = None,
        lockout_ms: Optional[int] = None,
    ) -> RateLimitStatus:
        """Record a failed attempt for an identifier."""
        response = self._client.post(
            "/v1/rate-limit/failure",
            json=self._rate_limit_body(identifier, max_attempts, window_ms, lockout_ms),
        )
        self._raise_for_error(response)
        return RateLimitStatus.from_dict(response.json())

    def clear_rate_limit(self, identifier: str) -> bool:
        """Clear an identifier. Returns True if it was being tracked."""
        response = self._client.post("/v1/rate-limit/clear", json={"identifier": identifier})
        self._raise_for_error(response)
        return bool(response.json().get("cleared"))
