"""Finnhub quote provider."""

import logging
import math
import os
import time
from typing import Any, Callable

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from marketgate.errors import ProviderNotConfiguredError
from marketgate.http.client import HttpClient, RateLimitError
from marketgate.quotes.provider import (
    FetchFailure,
    FetchOutcome,
    LiveQuote,
    QuoteProvider,
    Throttled,
)

logger = logging.getLogger(__name__)

# The API key travels in this header, never in the query string
TOKEN_HEADER = "X-Finnhub-Token"


class FinnhubQuote(BaseModel):
    """Response from Finnhub /quote endpoint."""

    model_config = ConfigDict(extra="allow")

    c: float | None = None  # current price
    d: float | None = None  # change
    dp: float | None = None  # percent change
    h: float | None = None  # high of the day
    l: float | None = None  # low of the day  # noqa: E741
    o: float | None = None  # open
    pc: float | None = None  # previous close

    def to_live_quote(self, symbol: str) -> LiveQuote | None:
        """Map onto a LiveQuote, or None when the current price is unusable."""
        price = self.c
        if price is None or not math.isfinite(price) or price <= 0:
            return None

        return LiveQuote(
            symbol=symbol,
            price=price,
            change=self.d or 0.0,
            change_percent=self.dp or 0.0,
            high=self.h or price,
            low=self.l or price,
            open=self.o or price,
            previous_close=self.pc or price,
        )


class FinnhubQuoteProvider(QuoteProvider):
    """
    Quote provider backed by the Finnhub REST API.

    Maps upstream conditions onto typed outcomes:
    - 429 -> Throttled
    - 403 -> FetchFailure, and further calls short-circuit for
      ``forbidden_backoff_seconds`` (plan restriction or revoked key)
    - other non-2xx, timeouts, network errors, malformed payloads or a
      missing/zero price -> FetchFailure
    """

    API_URL = "https://finnhub.io/api/v1"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        http_client: HttpClient | None = None,
        forbidden_backoff_seconds: float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the Finnhub provider.

        Args:
            api_key: Finnhub API key (or from FINNHUB_API_KEY env var)
            base_url: API base URL
            http_client: HTTP client to use (one is created if None)
            forbidden_backoff_seconds: Cooldown after a 403
            clock: Callable returning the current time in seconds

        Raises:
            ProviderNotConfiguredError: If no API key is available
        """
        self._api_key = api_key or os.getenv("FINNHUB_API_KEY")
        if not self._api_key:
            raise ProviderNotConfiguredError(self.name)

        self._http = http_client or HttpClient(
            base_url=base_url or self.API_URL,
            headers={"User-Agent": "marketgate/0.1"},
        )
        self._forbidden_backoff = forbidden_backoff_seconds
        self._forbidden_until: float | None = None
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Any) -> "FinnhubQuoteProvider":
        """Build a provider from application settings."""
        http_client = HttpClient(
            base_url=settings.finnhub_base_url,
            max_retries=settings.http_max_retries,
            backoff_factor=settings.http_backoff_factor,
            headers={"User-Agent": "marketgate/0.1"},
        )
        return cls(
            api_key=settings.finnhub_api_key,
            http_client=http_client,
            forbidden_backoff_seconds=settings.provider_forbidden_backoff_seconds,
        )

    @property
    def name(self) -> str:
        return "finnhub"

    @property
    def in_forbidden_backoff(self) -> bool:
        return self._forbidden_until is not None and self._clock() < self._forbidden_until

    async def fetch_one(self, symbol: str, timeout: float) -> FetchOutcome:
        """Fetch a quote for one symbol."""
        if self.in_forbidden_backoff:
            return FetchFailure("provider access forbidden, backing off")

        try:
            response = await self._http.get(
                "/quote",
                params={"symbol": symbol.strip().upper()},
                headers={TOKEN_HEADER: self._api_key},
                timeout=timeout,
            )
        except RateLimitError as e:
            logger.warning(f"Finnhub rate limited request for {symbol}")
            return Throttled(retry_after=e.retry_after)
        except httpx.TimeoutException:
            return FetchFailure("timeout")
        except httpx.HTTPError as e:
            logger.error(f"Error fetching {symbol} from Finnhub: {type(e).__name__}")
            return FetchFailure(f"network error: {type(e).__name__}")

        if response.status_code == 403:
            self._forbidden_until = self._clock() + self._forbidden_backoff
            logger.warning(
                f"Finnhub returned 403 for {symbol}; "
                f"backing off for {self._forbidden_backoff:.0f}s"
            )
            return FetchFailure("forbidden")

        if response.status_code != 200:
            logger.error(f"Finnhub API error for {symbol}: {response.status_code}")
            return FetchFailure(f"http {response.status_code}")

        try:
            quote = FinnhubQuote.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"Failed to parse Finnhub response for {symbol}: {e}")
            return FetchFailure("malformed payload")

        live = quote.to_live_quote(symbol)
        if live is None:
            logger.info(f"No valid Finnhub data for {symbol}")
            return FetchFailure("invalid price")
        return live

    async def close(self) -> None:
        await self._http.close()
