"""HTTP client with bounded retries, timeouts, and rate limit signalling."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


class RateLimitError(Exception):
    """Raised when an upstream API answers 429."""

    def __init__(self, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Retry after: {retry_after}s")


def parse_retry_after(response: httpx.Response) -> float | None:
    """Read a numeric Retry-After header, if present."""
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            return None
    return None


class HttpClient:
    """
    Async HTTP client with retry logic and rate limit signalling.

    Server errors and connection failures are retried with exponential
    backoff up to ``max_retries``. A 429 is never slept on or retried: it
    is raised immediately as RateLimitError so the caller can decide how
    to degrade.
    """

    DEFAULT_TIMEOUT = httpx.Timeout(
        connect=5.0,
        read=5.0,
        write=5.0,
        pool=5.0,
    )

    def __init__(
        self,
        base_url: str | None = None,
        timeout: httpx.Timeout | None = None,
        max_retries: int = 0,
        backoff_factor: float = 0.5,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the HTTP client.

        Args:
            base_url: Optional base URL for all requests
            timeout: Request timeout configuration
            max_retries: Maximum retry attempts for 5xx/connection errors
            backoff_factor: Exponential backoff multiplier
            headers: Default headers for all requests
            transport: Optional httpx transport (e.g. MockTransport in tests)
            sleep: Coroutine used for backoff waits
        """
        self._base_url = base_url
        self._timeout = timeout or self.DEFAULT_TIMEOUT
        self._max_retries = max_retries
        self._backoff_factor = backoff_factor
        self._default_headers = headers or {}
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url or "",
                timeout=self._timeout,
                headers=self._default_headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        return self._backoff_factor * (2**attempt)

    async def request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            **kwargs: Additional arguments for httpx

        Returns:
            httpx.Response (4xx other than 429 are returned, not raised)

        Raises:
            RateLimitError: On a 429 response
            httpx.HTTPStatusError: When 5xx responses exhaust retries
            httpx.TimeoutException, httpx.ConnectError: When retries are exhausted
        """
        client = await self._get_client()

        for attempt in range(self._max_retries + 1):
            try:
                response = await client.request(method, url, **kwargs)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < self._max_retries:
                    backoff = self._calculate_backoff(attempt)
                    logger.warning(
                        f"{type(e).__name__} on {method} {url}. "
                        f"Retrying in {backoff}s (attempt {attempt + 1})"
                    )
                    await self._sleep(backoff)
                    continue
                raise

            if response.status_code == 429:
                raise RateLimitError(parse_retry_after(response))

            if response.status_code >= 500:
                if attempt < self._max_retries:
                    backoff = self._calculate_backoff(attempt)
                    logger.warning(
                        f"Server error {response.status_code} on {method} {url}. "
                        f"Retrying in {backoff}s (attempt {attempt + 1})"
                    )
                    await self._sleep(backoff)
                    continue
                response.raise_for_status()

            return response

        raise RuntimeError("Unexpected retry loop exit")

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Make a GET request."""
        return await self.request("GET", url, **kwargs)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("HTTP client closed")

    async def __aenter__(self) -> "HttpClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
