"""
Batch quote fetching with cache, adaptive degradation and pacing.

For each requested symbol, in input order:
1. Cache hit -> emit as cached, no upstream call
2. Batch already throttled -> emit fallback, no upstream call
3. Otherwise call the provider with a bounded timeout:
   - throttled -> flag the batch as throttled, emit fallback
   - failure -> emit fallback (batch flag untouched)
   - success -> cache the record, emit as live
4. After a live success with symbols remaining, pause before the next call
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Sequence

from marketgate.cache import CacheBackend, InMemoryCache
from marketgate.errors import ProviderNotConfiguredError
from marketgate.http.client import RateLimitError
from marketgate.quotes.fallback import FallbackSynthesizer
from marketgate.quotes.finnhub import FinnhubQuoteProvider
from marketgate.quotes.models import Provenance, QuoteRecord, quote_cache_key
from marketgate.quotes.provider import (
    FetchFailure,
    FetchOutcome,
    LiveQuote,
    QuoteProvider,
    Throttled,
)
from marketgate.ratelimit import FixedWindowLimiter, RateLimitTier

logger = logging.getLogger(__name__)


class BatchFetchState:
    """
    State for one fetch_batch call. Never shared between batches.

    The throttled flag is monotonic: once set it stays set for the rest
    of the batch.
    """

    def __init__(self, symbols: Sequence[str]) -> None:
        self.symbols: list[str] = list(symbols)
        self.results: list[QuoteRecord | None] = [None] * len(self.symbols)
        self.upstream_calls = 0
        self._throttled = False
        self._lock = asyncio.Lock()

    @property
    def throttled(self) -> bool:
        return self._throttled

    async def mark_throttled(self) -> bool:
        """Set the throttled flag. Returns True if this call flipped it."""
        async with self._lock:
            if self._throttled:
                return False
            self._throttled = True
            return True

    def records(self) -> list[QuoteRecord]:
        return [record for record in self.results if record is not None]

    def summary(self) -> dict[str, Any]:
        counts = Counter(record.provenance.value for record in self.records())
        return {
            "total": len(self.symbols),
            "live": counts.get(Provenance.LIVE.value, 0),
            "cached": counts.get(Provenance.CACHED.value, 0),
            "fallback": counts.get(Provenance.FALLBACK.value, 0),
            "upstream_calls": self.upstream_calls,
            "throttled": self._throttled,
        }


class QuoteFetchOrchestrator:
    """
    Coordinates cache, upstream provider and fallback for quote batches.

    fetch_batch returns exactly one record per requested symbol, in input
    order. Provider problems degrade to fallback records; the only error
    raised is ProviderNotConfiguredError when no provider is available.

    Usage:
        orchestrator = QuoteFetchOrchestrator(provider=FinnhubQuoteProvider())
        records = await orchestrator.fetch_batch(["AAPL", "MSFT"])
    """

    def __init__(
        self,
        provider: QuoteProvider | None = None,
        cache: CacheBackend | None = None,
        synthesizer: FallbackSynthesizer | None = None,
        *,
        timeout_seconds: float = 5.0,
        cache_ttl_seconds: float = 30.0,
        pacing_delay_seconds: float = 0.1,
        max_concurrency: int = 1,
        upstream_limiter: FixedWindowLimiter | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            provider: Default upstream provider
            cache: Quote cache (an in-memory cache is created if None)
            synthesizer: Fallback generator
            timeout_seconds: Hard deadline for each upstream call
            cache_ttl_seconds: TTL for live records written to the cache
            pacing_delay_seconds: Pause after each live success
            max_concurrency: Upstream calls in flight per batch (1 = sequential)
            upstream_limiter: Optional quota tracker for the provider's ceiling
            sleep: Coroutine used for pacing
        """
        self._provider = provider
        self._cache = cache or InMemoryCache(default_ttl_seconds=cache_ttl_seconds)
        self._synthesizer = synthesizer or FallbackSynthesizer()
        self._timeout = timeout_seconds
        self._cache_ttl = cache_ttl_seconds
        self._pacing_delay = pacing_delay_seconds
        self._max_concurrency = max(1, max_concurrency)
        self._upstream_limiter = upstream_limiter
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        provider: QuoteProvider | None = None,
        cache: CacheBackend | None = None,
    ) -> QuoteFetchOrchestrator:
        """
        Build an orchestrator from application settings.

        A Finnhub provider is created when a key is configured and no
        provider is given; otherwise the orchestrator has no provider and
        fetch_batch reports the integration as unconfigured.
        """
        if provider is None and settings.provider_configured:
            provider = FinnhubQuoteProvider.from_settings(settings)

        upstream_limiter = None
        if settings.upstream_calls_per_minute > 0:
            upstream_limiter = FixedWindowLimiter(
                RateLimitTier(max_requests=settings.upstream_calls_per_minute, window_seconds=60),
                name="upstream",
            )

        return cls(
            provider=provider,
            cache=cache,
            timeout_seconds=settings.quote_timeout_seconds,
            cache_ttl_seconds=settings.quote_cache_ttl_seconds,
            pacing_delay_seconds=settings.quote_pacing_delay_seconds,
            max_concurrency=settings.quote_max_concurrency,
            upstream_limiter=upstream_limiter,
        )

    @property
    def provider(self) -> QuoteProvider | None:
        return self._provider

    @property
    def cache(self) -> CacheBackend:
        return self._cache

    @property
    def configured(self) -> bool:
        return self._provider is not None

    async def fetch_batch(
        self,
        symbols: Sequence[str],
        provider: QuoteProvider | None = None,
    ) -> list[QuoteRecord]:
        """
        Fetch quotes for an ordered batch of symbols.

        Args:
            symbols: Symbols in the order results should be returned
            provider: Provider for this batch (defaults to the configured one)

        Returns:
            One QuoteRecord per symbol, same order as ``symbols``

        Raises:
            ProviderNotConfiguredError: If no provider is available
        """
        provider = provider or self._provider
        if provider is None:
            raise ProviderNotConfiguredError()

        state = BatchFetchState(symbols)
        if not state.symbols:
            return []

        if self._max_concurrency == 1:
            await self._run_sequential(state, provider)
        else:
            await self._run_concurrent(state, provider)

        summary = state.summary()
        logger.info(
            f"Returning {summary['total']} quotes ({summary['live']} live, "
            f"{summary['cached']} cached, {summary['fallback']} fallback, "
            f"{summary['upstream_calls']} upstream calls"
            f"{', throttled' if summary['throttled'] else ''})"
        )
        return state.records()

    async def _run_sequential(self, state: BatchFetchState, provider: QuoteProvider) -> None:
        last_index = len(state.symbols) - 1
        for index in range(len(state.symbols)):
            went_live = await self._fetch_symbol(state, index, provider)
            if went_live and index < last_index and self._pacing_delay > 0:
                await self._sleep(self._pacing_delay)

    async def _run_concurrent(self, state: BatchFetchState, provider: QuoteProvider) -> None:
        semaphore = asyncio.Semaphore(self._max_concurrency)
        total = len(state.symbols)
        started = 0

        async def worker(index: int) -> None:
            nonlocal started
            async with semaphore:
                started += 1
                went_live = await self._fetch_symbol(state, index, provider)
                # Pace while holding the slot, and only while symbols still wait for one
                if went_live and started < total and self._pacing_delay > 0:
                    await self._sleep(self._pacing_delay)

        await asyncio.gather(*(worker(i) for i in range(len(state.symbols))))

    async def _fetch_symbol(self, state: BatchFetchState, index: int, provider: QuoteProvider) -> bool:
        """Resolve one symbol into state.results. Returns True for a live fetch."""
        symbol = state.symbols[index]
        key = quote_cache_key(symbol)

        cached = await self._cache.get(key)
        if cached is not None:
            state.results[index] = cached.with_provenance(Provenance.CACHED, symbol=symbol)
            return False

        if state.throttled:
            state.results[index] = self._synthesizer.synthesize(symbol)
            return False

        if self._upstream_limiter is not None:
            quota = await self._upstream_limiter.hit(provider.name)
            if not quota.allowed:
                if await state.mark_throttled():
                    logger.warning(
                        f"Upstream quota for {provider.name} exhausted; "
                        f"serving fallback for the rest of the batch"
                    )
                state.results[index] = self._synthesizer.synthesize(symbol)
                return False

        state.upstream_calls += 1
        outcome = await self._call_provider(provider, symbol)

        if isinstance(outcome, LiveQuote):
            record = outcome.to_record(symbol)
            await self._cache.set(key, record, self._cache_ttl)
            state.results[index] = record
            return True

        if isinstance(outcome, Throttled):
            if await state.mark_throttled():
                logger.warning(
                    f"{provider.name} throttled the batch at {symbol}; "
                    f"serving fallback for the remaining symbols"
                )
        else:
            logger.debug(f"Fallback for {symbol}: {outcome.reason}")

        state.results[index] = self._synthesizer.synthesize(symbol)
        return False

    async def _call_provider(self, provider: QuoteProvider, symbol: str) -> FetchOutcome:
        """Call the provider, converting every failure mode into an outcome."""
        try:
            outcome = await asyncio.wait_for(
                provider.fetch_one(symbol, self._timeout),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Timed out fetching {symbol} after {self._timeout}s")
            return FetchFailure("timeout")
        except RateLimitError as e:
            return Throttled(retry_after=e.retry_after)
        except Exception as e:
            logger.error(f"Provider {provider.name} failed for {symbol}: {e}")
            return FetchFailure(f"provider error: {type(e).__name__}")

        if isinstance(outcome, LiveQuote):
            if not outcome.is_valid:
                return FetchFailure("invalid price")
            return outcome
        if isinstance(outcome, (Throttled, FetchFailure)):
            return outcome
        return FetchFailure(f"unexpected outcome: {type(outcome).__name__}")

    async def close(self) -> None:
        """Close the default provider."""
        if self._provider is not None:
            await self._provider.close()
