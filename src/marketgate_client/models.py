"""
Response models for the MarketGate API.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Quote:
    """A quote with its provenance."""

    symbol: str
    price: float
    change: float
    change_percent: float
    high: float
    low: float
    open: float
    previous_close: float
    provenance: str

    @property
    def is_fallback(self) -> bool:
        return self.provenance == "fallback"

    @classmethod
    def from_dict(cls, data: dict) -> "Quote":
        return cls(
            symbol=data.get("symbol", ""),
            price=data.get("price", 0.0),
            change=data.get("change", 0.0),
            change_percent=data.get("changePercent", 0.0),
            high=data.get("high", 0.0),
            low=data.get("low", 0.0),
            open=data.get("open", 0.0),
            previous_close=data.get("previousClose", 0.0),
            provenance=data.get("provenance", "fallback"),
        )


@dataclass
class RateLimitStatus:
    """Inbound rate limit state for an identifier."""

    allowed: bool
    remaining_attempts: int
    lockout_minutes: int
    status: str
    message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RateLimitStatus":
        return cls(
            allowed=data.get("allowed", False),
            remaining_attempts=data.get("remainingAttempts", 0),
            lockout_minutes=data.get("lockoutTimeRemainingMinutes", 0),
            status=data.get("status", "ok"),
            message=data.get("message"),
        )
