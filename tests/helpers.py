"""Test doubles shared across test modules."""

from collections.abc import Iterable

from marketgate.quotes import FetchFailure, FetchOutcome, LiveQuote, QuoteProvider


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubProvider(QuoteProvider):
    """
    Provider returning scripted outcomes per symbol.

    Symbols without a script get a FetchFailure. An outcome may be an
    exception instance, which is raised instead of returned.
    """

    def __init__(self, outcomes: dict | None = None) -> None:
        self.outcomes = outcomes or {}
        self.calls: list[str] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "stub"

    async def fetch_one(self, symbol: str, timeout: float) -> FetchOutcome:
        self.calls.append(symbol)
        outcome = self.outcomes.get(symbol, FetchFailure("unscripted"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed = True


def live_quote(symbol: str, price: float = 150.0, change: float = 1.5) -> LiveQuote:
    """Build a live quote; any price is accepted, validity is checked by callers."""
    return LiveQuote(
        symbol=symbol,
        price=price,
        change=change,
        change_percent=change / price * 100 if price else 0.0,
        high=price + 2,
        low=price - 2,
        open=price - 1,
        previous_close=price - change,
    )


def live_provider(symbols: Iterable[str]) -> StubProvider:
    """Provider answering every given symbol with a valid live quote."""
    return StubProvider({symbol: live_quote(symbol) for symbol in symbols})
