"""Pytest configuration and fixtures."""

import random

import pytest

from helpers import FakeClock
from marketgate.quotes import FallbackSynthesizer


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def synthesizer() -> FallbackSynthesizer:
    """Seeded fallback synthesizer."""
    return FallbackSynthesizer(rng=random.Random(42))


@pytest.fixture
def sample_finnhub_quote() -> dict:
    """Sample Finnhub /quote response for testing."""
    return {
        "c": 189.84,
        "d": 1.32,
        "dp": 0.7002,
        "h": 190.32,
        "l": 188.19,
        "o": 188.5,
        "pc": 188.52,
        "t": 1700000000,
    }
