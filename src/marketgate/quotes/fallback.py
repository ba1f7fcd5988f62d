"""Placeholder quotes for when live data is unavailable."""

from __future__ import annotations

import random
from typing import Mapping

from marketgate.quotes.models import Provenance, QuoteRecord

# Rough price levels for well-known symbols. Placeholders, not a pricing model.
BASELINE_PRICES: dict[str, float] = {
    "AAPL": 180.0,
    "MSFT": 380.0,
    "GOOGL": 140.0,
    "GOOG": 140.0,
    "AMZN": 155.0,
    "NVDA": 480.0,
    "META": 350.0,
    "TSLA": 240.0,
    "NFLX": 480.0,
    "AMD": 140.0,
    "JPM": 170.0,
    "V": 260.0,
    "SPY": 470.0,
    "QQQ": 400.0,
    "DIA": 375.0,
}

DEFAULT_BASELINE = 100.0
PRICE_JITTER = 2.0
CHANGE_JITTER = 3.0
RANGE_PADDING = 2.0
MIN_PRICE = 0.01


class FallbackSynthesizer:
    """
    Generates plausible placeholder quotes tagged as fallback.

    Price is the symbol's baseline jittered by at most PRICE_JITTER and
    change is jittered by at most CHANGE_JITTER. Derived fields are built
    so that ``high >= price >= low`` and
    ``change_percent == change / price * 100`` always hold.

    Pass a seeded ``random.Random`` for reproducible output.
    """

    def __init__(
        self,
        baselines: Mapping[str, float] | None = None,
        default_baseline: float = DEFAULT_BASELINE,
        rng: random.Random | None = None,
    ) -> None:
        self._baselines = {k.upper(): v for k, v in (baselines or BASELINE_PRICES).items()}
        self._default_baseline = default_baseline
        self._rng = rng or random.Random()

    def baseline_for(self, symbol: str) -> float:
        return self._baselines.get(symbol.strip().upper(), self._default_baseline)

    def synthesize(self, symbol: str) -> QuoteRecord:
        """Build a fallback quote for ``symbol``. Never raises."""
        baseline = self.baseline_for(symbol)
        price = round(baseline + self._rng.uniform(-PRICE_JITTER, PRICE_JITTER), 2)
        price = max(price, MIN_PRICE)
        change = round(self._rng.uniform(-CHANGE_JITTER, CHANGE_JITTER), 2)
        spread = abs(change) + RANGE_PADDING
        previous_close = round(price - change, 2)

        return QuoteRecord(
            symbol=symbol,
            price=price,
            change=change,
            change_percent=change / price * 100,
            high=round(price + spread, 2),
            low=round(price - spread, 2),
            open=previous_close,
            previous_close=previous_close,
            provenance=Provenance.FALLBACK,
        )
