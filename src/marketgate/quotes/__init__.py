"""
Quotes module.

Live quote providers, fallback synthesis, and the batch orchestrator
that decides per symbol between cache, live fetch and fallback.
"""

from marketgate.quotes.fallback import BASELINE_PRICES, FallbackSynthesizer
from marketgate.quotes.finnhub import FinnhubQuote, FinnhubQuoteProvider
from marketgate.quotes.models import Provenance, QuoteRecord, quote_cache_key
from marketgate.quotes.orchestrator import BatchFetchState, QuoteFetchOrchestrator
from marketgate.quotes.provider import (
    FetchFailure,
    FetchOutcome,
    LiveQuote,
    QuoteProvider,
    Throttled,
)

__all__ = [
    "BASELINE_PRICES",
    "BatchFetchState",
    "FallbackSynthesizer",
    "FetchFailure",
    "FetchOutcome",
    "FinnhubQuote",
    "FinnhubQuoteProvider",
    "LiveQuote",
    "Provenance",
    "QuoteFetchOrchestrator",
    "QuoteProvider",
    "QuoteRecord",
    "Throttled",
    "quote_cache_key",
]
