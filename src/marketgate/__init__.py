"""Resilient market-data access layer: rate limiting, short-TTL caching and adaptive quote fetching."""

__version__ = "0.1.0"
