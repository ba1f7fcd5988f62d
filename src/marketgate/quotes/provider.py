"""Upstream quote provider interface and its typed outcomes."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Union

from marketgate.quotes.models import Provenance, QuoteRecord


@dataclass(frozen=True)
class LiveQuote:
    """Quote fields as reported by the upstream provider."""

    symbol: str
    price: float
    change: float
    change_percent: float
    high: float
    low: float
    open: float
    previous_close: float

    @property
    def is_valid(self) -> bool:
        """A zero, negative or non-finite price means the payload is unusable."""
        return math.isfinite(self.price) and self.price > 0

    def to_record(self, symbol: str | None = None) -> QuoteRecord:
        return QuoteRecord(
            symbol=symbol if symbol is not None else self.symbol,
            price=self.price,
            change=self.change,
            change_percent=self.change_percent,
            high=self.high,
            low=self.low,
            open=self.open,
            previous_close=self.previous_close,
            provenance=Provenance.LIVE,
        )


@dataclass(frozen=True)
class Throttled:
    """The provider explicitly rate limited the call."""

    retry_after: float | None = None


@dataclass(frozen=True)
class FetchFailure:
    """Any other unusable outcome: network error, timeout, bad payload."""

    reason: str


FetchOutcome = Union[LiveQuote, Throttled, FetchFailure]


class QuoteProvider(ABC):
    """
    Abstract base class for upstream quote providers.

    Implementations map every upstream condition onto a FetchOutcome;
    callers still guard against exceptions escaping fetch_one.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this provider.

        Returns:
            Provider name (e.g., 'finnhub')
        """
        ...

    @abstractmethod
    async def fetch_one(self, symbol: str, timeout: float) -> FetchOutcome:
        """
        Fetch a quote for one symbol.

        Args:
            symbol: Ticker symbol
            timeout: Seconds allowed for the upstream call

        Returns:
            LiveQuote, Throttled, or FetchFailure
        """
        ...

    async def close(self) -> None:
        """Release provider resources."""
        return None
