"""Quote records returned to callers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any


class Provenance(str, Enum):
    """Where a quote came from."""

    LIVE = "live"
    CACHED = "cached"
    FALLBACK = "fallback"


def quote_cache_key(symbol: str) -> str:
    """Cache key for a symbol; case and whitespace variants share an entry."""
    return f"quote:{symbol.strip().upper()}"


@dataclass(frozen=True)
class QuoteRecord:
    """
    A complete quote for one requested symbol.

    Records are never partial: a live record has every field filled from
    a valid upstream payload, anything else is a fallback.
    """

    symbol: str
    price: float
    change: float
    change_percent: float
    high: float
    low: float
    open: float
    previous_close: float
    provenance: Provenance

    @property
    def is_fallback(self) -> bool:
        return self.provenance is Provenance.FALLBACK

    def with_provenance(self, provenance: Provenance, symbol: str | None = None) -> QuoteRecord:
        """Copy of this record re-tagged (and optionally re-labelled)."""
        return replace(self, provenance=provenance, symbol=symbol if symbol is not None else self.symbol)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["provenance"] = self.provenance.value
        return data
