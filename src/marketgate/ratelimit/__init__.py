"""
Rate limiting module.

Provides fixed-window failure counters with lockout escalation, request
tiers for inbound APIs and upstream quota, and a gate that projects
counter state onto caller-facing messages.
"""

from marketgate.ratelimit.gate import (
    GateDecision,
    GateStatus,
    RateLimitGate,
    rate_limit_message,
)
from marketgate.ratelimit.window import (
    RATE_LIMIT_TIERS,
    FixedWindowLimiter,
    RateLimitTier,
    RequestLimitResult,
    WindowCheckResult,
    WindowCounter,
    WindowEntry,
    client_identifier,
    normalize_identifier,
    rate_limit_headers,
)

__all__ = [
    "FixedWindowLimiter",
    "GateDecision",
    "GateStatus",
    "RATE_LIMIT_TIERS",
    "RateLimitGate",
    "RateLimitTier",
    "RequestLimitResult",
    "WindowCheckResult",
    "WindowCounter",
    "WindowEntry",
    "client_identifier",
    "normalize_identifier",
    "rate_limit_headers",
    "rate_limit_message",
]
