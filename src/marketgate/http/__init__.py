"""HTTP utilities for upstream providers."""

from marketgate.http.client import HttpClient, RateLimitError

__all__ = ["HttpClient", "RateLimitError"]
