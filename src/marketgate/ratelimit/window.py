"""
Fixed-window counters for rate limiting.

Provides two fixed-window strategies:
- WindowCounter: failure counter with escalating lockout (auth, abuse)
- FixedWindowLimiter: request counter for named API tiers and upstream quota

All expiry is evaluated lazily on access; there is no background sweep,
so memory for an identifier is only reclaimed by further activity on it
(or an explicit cleanup call).
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def normalize_identifier(identifier: str) -> str:
    """Normalize an identifier so that case and whitespace variants collide."""
    return identifier.strip().lower()


def _redact(identifier: str) -> str:
    return identifier[:10] + "..." if len(identifier) > 10 else identifier


# --- Failure counter with lockout ---


@dataclass
class WindowEntry:
    """Failure bookkeeping for one identifier."""

    identifier: str
    """Normalized identifier (email, IP, API key)."""

    count: int
    """Failures recorded in the current window."""

    window_start: float
    """Clock time at which the current window opened."""

    locked_until: float | None = None
    """Clock time until which the identifier is denied."""

    def is_locked(self, now: float) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def is_stale(self, now: float, window_seconds: float) -> bool:
        """Whether the entry no longer constrains the identifier."""
        if self.is_locked(now):
            return False
        if self.locked_until is not None:
            # Lockout served
            return True
        return now - self.window_start > window_seconds


@dataclass
class WindowCheckResult:
    """Result of a lockout check."""

    allowed: bool
    """Whether the identifier may attempt again."""

    remaining_attempts: int
    """Failures left before lockout."""

    lockout_remaining_minutes: int = 0
    """Whole minutes until the lockout ends (rounded up)."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining_attempts": self.remaining_attempts,
            "lockout_remaining_minutes": self.lockout_remaining_minutes,
        }


class WindowCounter:
    """
    Fixed-window failure counter with escalating lockout.

    Failures accumulate inside a window that opens on the first failure.
    Reaching ``max_attempts`` inside one window locks the identifier out
    for ``lockout_seconds``. Windows and lockouts expire lazily.

    Limits given to the constructor are defaults; every call may override
    them so one counter can serve several policies.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 15 * 60,
        lockout_seconds: float = 30 * 60,
        clock: Clock = time.time,
    ) -> None:
        """
        Initialize the counter.

        Args:
            max_attempts: Failures allowed per window before lockout
            window_seconds: Window length in seconds
            lockout_seconds: Lockout length in seconds
            clock: Callable returning the current time in seconds
        """
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._lockout_seconds = lockout_seconds
        self._clock = clock
        self._entries: dict[str, WindowEntry] = {}
        self._lock = asyncio.Lock()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def check(
        self,
        identifier: str,
        max_attempts: int | None = None,
        window_seconds: float | None = None,
    ) -> WindowCheckResult:
        """
        Check whether an identifier may attempt again.

        Args:
            identifier: Raw identifier (normalized internally)
            max_attempts: Override for the failure threshold
            window_seconds: Override for the window length

        Returns:
            WindowCheckResult with the current state
        """
        limit = self._max_attempts if max_attempts is None else max_attempts
        window = self._window_seconds if window_seconds is None else window_seconds
        key = normalize_identifier(identifier)

        async with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None:
                return WindowCheckResult(allowed=True, remaining_attempts=limit)

            if entry.locked_until is not None and now < entry.locked_until:
                return WindowCheckResult(
                    allowed=False,
                    remaining_attempts=0,
                    lockout_remaining_minutes=math.ceil((entry.locked_until - now) / 60),
                )

            if entry.is_stale(now, window):
                del self._entries[key]
                return WindowCheckResult(allowed=True, remaining_attempts=limit)

            remaining = limit - entry.count
            return WindowCheckResult(
                allowed=remaining > 0,
                remaining_attempts=max(0, remaining),
            )

    async def record_failure(
        self,
        identifier: str,
        window_seconds: float | None = None,
        lockout_seconds: float | None = None,
        max_attempts: int | None = None,
    ) -> WindowEntry:
        """
        Record a failed attempt.

        Args:
            identifier: Raw identifier (normalized internally)
            window_seconds: Override for the window length
            lockout_seconds: Override for the lockout length
            max_attempts: Override for the failure threshold

        Returns:
            Snapshot of the entry after recording
        """
        limit = self._max_attempts if max_attempts is None else max_attempts
        window = self._window_seconds if window_seconds is None else window_seconds
        lockout = self._lockout_seconds if lockout_seconds is None else lockout_seconds
        key = normalize_identifier(identifier)

        async with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or entry.is_stale(now, window):
                entry = WindowEntry(identifier=key, count=1, window_start=now)
                self._entries[key] = entry
            else:
                entry.count += 1

            if entry.count >= limit:
                locked_until = now + lockout
                if entry.locked_until is None or locked_until > entry.locked_until:
                    if entry.locked_until is None:
                        logger.warning(
                            f"Locking out {_redact(key)} for {lockout:.0f}s "
                            f"after {entry.count} failures"
                        )
                    entry.locked_until = locked_until

            return replace(entry)

    async def clear(self, identifier: str) -> bool:
        """
        Forget all failures for an identifier.

        Returns:
            True if an entry existed
        """
        key = normalize_identifier(identifier)
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def get_entry(self, identifier: str) -> WindowEntry | None:
        """Get a snapshot of the raw entry, without expiry evaluation."""
        key = normalize_identifier(identifier)
        async with self._lock:
            entry = self._entries.get(key)
            return replace(entry) if entry is not None else None

    def size(self) -> int:
        """Number of tracked identifiers, including lazily-expired ones."""
        return len(self._entries)


# --- Request counter for API tiers ---


@dataclass(frozen=True)
class RateLimitTier:
    """Request budget for one tier."""

    max_requests: int
    window_seconds: float


RATE_LIMIT_TIERS: dict[str, RateLimitTier] = {
    "authenticated": RateLimitTier(max_requests=100, window_seconds=60),
    "anonymous": RateLimitTier(max_requests=30, window_seconds=60),
    "ai": RateLimitTier(max_requests=10, window_seconds=60),
    "data": RateLimitTier(max_requests=60, window_seconds=60),
    "auth": RateLimitTier(max_requests=5, window_seconds=15 * 60),
}


@dataclass
class RequestLimitResult:
    """Result of a request-tier hit."""

    allowed: bool
    """Whether the request is allowed."""

    remaining: int
    """Remaining requests in the current window."""

    limit: int
    """Maximum requests allowed in the window."""

    reset_at: float
    """Clock time when the current window resets."""

    retry_after: float | None = None
    """Seconds to wait before retrying (if not allowed)."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_at": datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat(),
            "retry_after": self.retry_after,
        }


class FixedWindowLimiter:
    """
    Fixed-window request limiter.

    The first request for an identifier opens a window of
    ``tier.window_seconds``; admitted requests are counted until the
    window ends. Requests over the budget are rejected without being
    counted.
    """

    def __init__(
        self,
        tier: RateLimitTier,
        clock: Clock = time.time,
        name: str = "fixed_window",
    ) -> None:
        self._tier = tier
        self._clock = clock
        self._name = name
        self._windows: dict[str, tuple[int, float]] = {}  # key -> (count, reset_at)
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def tier(self) -> RateLimitTier:
        return self._tier

    async def hit(self, identifier: str) -> RequestLimitResult:
        """Count a request against the identifier's window."""
        key = normalize_identifier(identifier)
        limit = self._tier.max_requests

        async with self._lock:
            now = self._clock()
            current = self._windows.get(key)

            if current is None or now > current[1]:
                reset_at = now + self._tier.window_seconds
                self._windows[key] = (1, reset_at)
                return RequestLimitResult(
                    allowed=limit >= 1,
                    remaining=max(0, limit - 1),
                    limit=limit,
                    reset_at=reset_at,
                )

            count, reset_at = current
            if count >= limit:
                return RequestLimitResult(
                    allowed=False,
                    remaining=0,
                    limit=limit,
                    reset_at=reset_at,
                    retry_after=max(0.0, reset_at - now),
                )

            count += 1
            self._windows[key] = (count, reset_at)
            return RequestLimitResult(
                allowed=True,
                remaining=limit - count,
                limit=limit,
                reset_at=reset_at,
            )

    async def reset(self, identifier: str) -> bool:
        """Reset the window for an identifier."""
        async with self._lock:
            return self._windows.pop(normalize_identifier(identifier), None) is not None

    async def cleanup_expired(self) -> int:
        """Drop windows that have already reset. Never scheduled automatically."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, (_, reset_at) in self._windows.items() if now > reset_at]
            for key in expired:
                del self._windows[key]

        if expired:
            logger.debug(f"{self._name}: cleaned up {len(expired)} expired windows")
        return len(expired)

    def size(self) -> int:
        return len(self._windows)


# --- Request helpers ---


def client_identifier(headers: Mapping[str, str], fallback: str | None = None) -> str:
    """
    Derive a caller identifier from request headers.

    Prefers proxy headers (first X-Forwarded-For hop, X-Real-IP,
    CF-Connecting-IP), then the socket peer, then a hash of the
    user agent and origin.
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    for header in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(header)
        if value:
            return value.strip()

    if fallback:
        return fallback

    user_agent = headers.get("user-agent") or "unknown"
    origin = headers.get("origin") or "unknown"
    digest = hashlib.sha256(f"{user_agent}{origin}".encode()).hexdigest()[:12]
    return f"fallback:{digest}"


def rate_limit_headers(result: RequestLimitResult) -> dict[str, str]:
    """Build X-RateLimit-* (and Retry-After) response headers."""
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(max(0, result.remaining)),
        "X-RateLimit-Reset": str(int(math.ceil(result.reset_at))),
    }
    if result.retry_after:
        headers["Retry-After"] = str(int(math.ceil(result.retry_after)))
    return headers
