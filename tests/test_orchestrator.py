"""Tests for the batch quote orchestrator."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from marketgate.cache import InMemoryCache
from marketgate.config import Settings
from marketgate.errors import ProviderNotConfiguredError
from marketgate.http.client import RateLimitError
from marketgate.quotes import (
    BatchFetchState,
    FetchFailure,
    FetchOutcome,
    FinnhubQuoteProvider,
    LiveQuote,
    Provenance,
    QuoteFetchOrchestrator,
    QuoteProvider,
    Throttled,
)
from marketgate.ratelimit import FixedWindowLimiter, RateLimitTier

from helpers import StubProvider, live_provider, live_quote


@pytest.fixture
def sleep() -> AsyncMock:
    """Pacing sleep that returns immediately."""
    return AsyncMock()


@pytest.fixture
def cache(clock) -> InMemoryCache:
    return InMemoryCache(default_ttl_seconds=30, clock=clock)


@pytest.fixture
def make_orchestrator(cache, synthesizer, sleep):
    """Factory for orchestrators sharing the fake-clock cache."""

    def _make(provider: QuoteProvider | None = None, **kwargs) -> QuoteFetchOrchestrator:
        kwargs.setdefault("sleep", sleep)
        return QuoteFetchOrchestrator(
            provider=provider,
            cache=cache,
            synthesizer=synthesizer,
            **kwargs,
        )

    return _make


def provenances(records) -> list[str]:
    return [r.provenance.value for r in records]


class TestBatchOrder:
    """Tests for result ordering."""

    @pytest.mark.asyncio
    async def test_results_match_input_order(self, make_orchestrator, cache) -> None:
        """Test each result lines up with its input symbol across all paths."""
        provider = StubProvider({"B": live_quote("B"), "C": FetchFailure("boom")})
        orchestrator = make_orchestrator(provider)
        await cache.set("quote:A", live_quote("A").to_record(), 30)

        records = await orchestrator.fetch_batch(["A", "B", "C"])

        assert [r.symbol for r in records] == ["A", "B", "C"]
        assert provenances(records) == ["cached", "live", "fallback"]

    @pytest.mark.asyncio
    async def test_duplicates_and_case_preserved(self, make_orchestrator) -> None:
        """Test duplicates get one record each and keep the requested spelling."""
        orchestrator = make_orchestrator(live_provider(["AAPL", "aapl"]))

        records = await orchestrator.fetch_batch(["AAPL", "aapl"])

        assert [r.symbol for r in records] == ["AAPL", "aapl"]
        assert provenances(records) == ["live", "cached"]

    @pytest.mark.asyncio
    async def test_empty_batch(self, make_orchestrator) -> None:
        """Test an empty batch returns an empty list without calls."""
        provider = StubProvider()
        records = await make_orchestrator(provider).fetch_batch([])

        assert records == []
        assert provider.calls == []


class TestStickyThrottle:
    """Tests for batch-level throttling."""

    @pytest.mark.asyncio
    async def test_throttle_stops_upstream_calls(self, make_orchestrator) -> None:
        """Test symbols after a throttle are served from fallback without calls."""
        provider = StubProvider(
            {
                "A": live_quote("A"),
                "B": Throttled(retry_after=30),
                "C": live_quote("C"),
                "D": live_quote("D"),
            }
        )
        orchestrator = make_orchestrator(provider)

        records = await orchestrator.fetch_batch(["A", "B", "C", "D"])

        assert provenances(records) == ["live", "fallback", "fallback", "fallback"]
        assert provider.calls == ["A", "B"]

    @pytest.mark.asyncio
    async def test_cache_still_served_after_throttle(self, make_orchestrator, cache) -> None:
        """Test cached symbols are still served as cached after a throttle."""
        provider = StubProvider({"A": Throttled()})
        await cache.set("quote:B", live_quote("B").to_record(), 30)

        records = await make_orchestrator(provider).fetch_batch(["A", "B", "C"])

        assert provenances(records) == ["fallback", "cached", "fallback"]
        assert provider.calls == ["A"]

    @pytest.mark.asyncio
    async def test_failure_does_not_throttle(self, make_orchestrator) -> None:
        """Test a plain failure only affects its own symbol."""
        provider = StubProvider({"A": FetchFailure("timeout"), "B": live_quote("B")})

        records = await make_orchestrator(provider).fetch_batch(["A", "B"])

        assert provenances(records) == ["fallback", "live"]
        assert provider.calls == ["A", "B"]

    @pytest.mark.asyncio
    async def test_throttle_does_not_leak_across_batches(self, make_orchestrator) -> None:
        """Test a new batch starts unthrottled."""
        provider = StubProvider({"A": Throttled(), "B": live_quote("B")})
        orchestrator = make_orchestrator(provider)

        await orchestrator.fetch_batch(["A", "B"])
        records = await orchestrator.fetch_batch(["B"])

        assert provenances(records) == ["live"]
        assert provider.calls == ["A", "B"]

    @pytest.mark.asyncio
    async def test_raised_rate_limit_error_throttles(self, make_orchestrator) -> None:
        """Test a RateLimitError escaping the provider counts as a throttle."""
        provider = StubProvider({"A": RateLimitError(retry_after=5), "B": live_quote("B")})

        records = await make_orchestrator(provider).fetch_batch(["A", "B"])

        assert provenances(records) == ["fallback", "fallback"]
        assert provider.calls == ["A"]


class TestEndToEnd:
    """End-to-end batch scenario."""

    @pytest.mark.asyncio
    async def test_live_then_cached(self, make_orchestrator, clock) -> None:
        """Test live + throttled batch, then a cached repeat within the TTL."""
        provider = StubProvider({"AAPL": live_quote("AAPL", price=189.84), "ZZZZ": Throttled()})
        orchestrator = make_orchestrator(provider)

        first = await orchestrator.fetch_batch(["AAPL", "ZZZZ"])
        assert [(r.symbol, r.provenance.value) for r in first] == [
            ("AAPL", "live"),
            ("ZZZZ", "fallback"),
        ]
        assert first[0].price == 189.84

        clock.advance(29)
        again = await orchestrator.fetch_batch(["AAPL"])

        assert [(r.symbol, r.provenance.value) for r in again] == [("AAPL", "cached")]
        assert again[0].price == 189.84
        assert provider.calls == ["AAPL", "ZZZZ"]

    @pytest.mark.asyncio
    async def test_cache_expires_after_ttl(self, make_orchestrator, clock) -> None:
        """Test a symbol is fetched live again once its cache entry expires."""
        provider = live_provider(["AAPL"])
        orchestrator = make_orchestrator(provider)

        await orchestrator.fetch_batch(["AAPL"])
        clock.advance(30)
        records = await orchestrator.fetch_batch(["AAPL"])

        assert provenances(records) == ["live"]
        assert provider.calls == ["AAPL", "AAPL"]

    @pytest.mark.asyncio
    async def test_fallback_not_cached(self, make_orchestrator) -> None:
        """Test fallback records are never written to the cache."""
        provider = StubProvider({"A": FetchFailure("boom")})
        orchestrator = make_orchestrator(provider)

        await orchestrator.fetch_batch(["A"])
        await orchestrator.fetch_batch(["A"])

        assert provider.calls == ["A", "A"]


class TestProviderFailures:
    """Tests for provider failure handling."""

    @pytest.mark.asyncio
    async def test_invalid_price_is_failure(self, make_orchestrator) -> None:
        """Test a zero price from the provider is treated as a failure."""
        provider = StubProvider({"A": live_quote("A", price=0.0), "B": live_quote("B")})

        records = await make_orchestrator(provider).fetch_batch(["A", "B"])

        assert provenances(records) == ["fallback", "live"]
        assert records[0].price > 0

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_failure(self, make_orchestrator) -> None:
        """Test an arbitrary provider exception degrades to fallback."""
        provider = StubProvider({"A": ValueError("bad payload"), "B": live_quote("B")})

        records = await make_orchestrator(provider).fetch_batch(["A", "B"])

        assert provenances(records) == ["fallback", "live"]

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self, make_orchestrator) -> None:
        """Test a call exceeding the timeout is cancelled and treated as a failure."""

        class SlowProvider(StubProvider):
            async def fetch_one(self, symbol: str, timeout: float) -> FetchOutcome:
                self.calls.append(symbol)
                if symbol == "SLOW":
                    await asyncio.sleep(10)
                return live_quote(symbol)

        provider = SlowProvider()
        orchestrator = make_orchestrator(provider, timeout_seconds=0.05)

        records = await orchestrator.fetch_batch(["SLOW", "FAST"])

        assert provenances(records) == ["fallback", "live"]

    @pytest.mark.asyncio
    async def test_unexpected_outcome_is_failure(self, make_orchestrator) -> None:
        """Test a provider returning something else degrades to fallback."""
        provider = StubProvider({"A": {"c": 100}})  # type: ignore[dict-item]

        records = await make_orchestrator(provider).fetch_batch(["A"])

        assert provenances(records) == ["fallback"]


class TestConfiguration:
    """Tests for provider configuration."""

    @pytest.mark.asyncio
    async def test_no_provider_raises(self, make_orchestrator) -> None:
        """Test a missing provider is reported, not silently degraded."""
        orchestrator = make_orchestrator(None)

        assert orchestrator.configured is False
        with pytest.raises(ProviderNotConfiguredError):
            await orchestrator.fetch_batch(["AAPL"])

    @pytest.mark.asyncio
    async def test_per_call_provider(self, make_orchestrator) -> None:
        """Test a provider passed per call is used."""
        provider = live_provider(["AAPL"])

        records = await make_orchestrator(None).fetch_batch(["AAPL"], provider=provider)

        assert provenances(records) == ["live"]

    def test_from_settings_without_key(self) -> None:
        """Test settings without a key give an unconfigured orchestrator."""
        orchestrator = QuoteFetchOrchestrator.from_settings(Settings(finnhub_api_key=None))
        assert orchestrator.configured is False

    def test_from_settings_with_key(self) -> None:
        """Test settings with a key build a Finnhub provider."""
        orchestrator = QuoteFetchOrchestrator.from_settings(Settings(finnhub_api_key="test-key"))
        assert isinstance(orchestrator.provider, FinnhubQuoteProvider)

    @pytest.mark.asyncio
    async def test_close_closes_provider(self, make_orchestrator) -> None:
        """Test closing the orchestrator closes its provider."""
        provider = StubProvider()
        await make_orchestrator(provider).close()
        assert provider.closed is True


class TestPacing:
    """Tests for courtesy pacing between live calls."""

    @pytest.mark.asyncio
    async def test_sleeps_after_live_success_with_symbols_remaining(
        self, make_orchestrator, sleep: AsyncMock
    ) -> None:
        """Test pacing follows each live success except the last symbol."""
        orchestrator = make_orchestrator(live_provider(["A", "B", "C"]), pacing_delay_seconds=0.1)

        await orchestrator.fetch_batch(["A", "B", "C"])

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.1)

    @pytest.mark.asyncio
    async def test_no_pacing_after_cache_or_fallback(
        self, make_orchestrator, cache, sleep: AsyncMock
    ) -> None:
        """Test cache hits and fallbacks are not paced."""
        await cache.set("quote:A", live_quote("A").to_record(), 30)
        provider = StubProvider({"B": FetchFailure("boom"), "C": live_quote("C")})

        await make_orchestrator(provider).fetch_batch(["A", "B", "C"])

        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pacing_disabled(self, make_orchestrator, sleep: AsyncMock) -> None:
        """Test a zero delay disables pacing."""
        orchestrator = make_orchestrator(live_provider(["A", "B"]), pacing_delay_seconds=0)

        await orchestrator.fetch_batch(["A", "B"])

        sleep.assert_not_awaited()


class TestConcurrentBatch:
    """Tests for concurrent fetching within a batch."""

    @pytest.mark.asyncio
    async def test_order_preserved(self, make_orchestrator) -> None:
        """Test concurrent fetching keeps input order."""
        symbols = [f"S{i}" for i in range(10)]
        orchestrator = make_orchestrator(live_provider(symbols), max_concurrency=4)

        records = await orchestrator.fetch_batch(symbols)

        assert [r.symbol for r in records] == symbols
        assert set(provenances(records)) == {"live"}

    @pytest.mark.asyncio
    async def test_throttle_flag_visible_to_later_calls(self, make_orchestrator) -> None:
        """Test a throttle seen by one worker stops later upstream calls."""
        release = asyncio.Event()

        class GatedProvider(StubProvider):
            async def fetch_one(self, symbol: str, timeout: float) -> FetchOutcome:
                self.calls.append(symbol)
                if symbol == "T":
                    return Throttled()
                await release.wait()
                return live_quote(symbol)

        provider = GatedProvider()
        orchestrator = make_orchestrator(provider, max_concurrency=2)

        async def open_gate() -> None:
            await asyncio.sleep(0.01)
            release.set()

        records, _ = await asyncio.gather(
            orchestrator.fetch_batch(["T", "A", "B", "C"]),
            open_gate(),
        )

        assert records[0].provenance == Provenance.FALLBACK
        assert records[1].provenance == Provenance.LIVE
        assert provider.calls == ["T", "A"]
        assert provenances(records[2:]) == ["fallback", "fallback"]

    @pytest.mark.asyncio
    async def test_no_pause_once_every_symbol_has_started(
        self, make_orchestrator, sleep: AsyncMock
    ) -> None:
        """Test workers skip pacing when no symbol is left waiting for a slot."""
        release = asyncio.Event()

        class GatedProvider(StubProvider):
            async def fetch_one(self, symbol: str, timeout: float) -> FetchOutcome:
                self.calls.append(symbol)
                await release.wait()
                return live_quote(symbol)

        orchestrator = make_orchestrator(GatedProvider(), max_concurrency=2, pacing_delay_seconds=0.1)

        async def open_gate() -> None:
            await asyncio.sleep(0.01)
            release.set()

        records, _ = await asyncio.gather(orchestrator.fetch_batch(["A", "B"]), open_gate())

        assert provenances(records) == ["live", "live"]
        sleep.assert_not_awaited()


class TestUpstreamQuota:
    """Tests for the optional upstream quota tracker."""

    @pytest.mark.asyncio
    async def test_exhausted_quota_throttles_batch(self, make_orchestrator, clock) -> None:
        """Test calls beyond the upstream budget degrade like a throttle."""
        limiter = FixedWindowLimiter(RateLimitTier(max_requests=2, window_seconds=60), clock=clock)
        provider = live_provider(["A", "B", "C", "D"])
        orchestrator = make_orchestrator(provider, upstream_limiter=limiter)

        records = await orchestrator.fetch_batch(["A", "B", "C", "D"])

        assert provenances(records) == ["live", "live", "fallback", "fallback"]
        assert provider.calls == ["A", "B"]


class TestBatchFetchState:
    """Tests for BatchFetchState."""

    @pytest.mark.asyncio
    async def test_mark_throttled_flips_once(self) -> None:
        """Test only the first mark reports a flip."""
        state = BatchFetchState(["A"])

        flips = await asyncio.gather(*(state.mark_throttled() for _ in range(5)))

        assert flips.count(True) == 1
        assert state.throttled is True

    def test_summary_counts(self, synthesizer) -> None:
        """Test the summary counts provenance."""
        state = BatchFetchState(["A", "B"])
        state.results[0] = live_quote("A").to_record()
        state.results[1] = synthesizer.synthesize("B")
        state.upstream_calls = 1

        summary = state.summary()
        assert summary["live"] == 1
        assert summary["fallback"] == 1
        assert summary["cached"] == 0
        assert summary["throttled"] is False


class TestLiveQuote:
    """Tests for LiveQuote validity."""

    @pytest.mark.parametrize("price", [0.0, -1.0, float("nan"), float("inf")])
    def test_invalid_prices(self, price: float) -> None:
        """Test unusable prices are invalid."""
        assert live_quote("A", price=price).is_valid is False

    def test_valid_price(self) -> None:
        """Test a positive price is valid."""
        quote: LiveQuote = live_quote("A", price=0.01)
        assert quote.is_valid is True
