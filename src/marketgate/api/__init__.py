"""HTTP API for quotes and rate limiting."""

from marketgate.api.app import app, create_app

__all__ = ["app", "create_app"]
