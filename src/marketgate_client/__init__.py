"""
MarketGate Client SDK
Python client library for the MarketGate API.
"""

from .client import MarketGateClient, MarketGateError
from .models import Quote, RateLimitStatus

__version__ = "0.1.0"
__all__ = [
    "MarketGateClient",
    "MarketGateError",
    "Quote",
    "RateLimitStatus",
]
