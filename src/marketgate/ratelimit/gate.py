"""
Rate limit gate for inbound identifiers.

Composes the WindowCounter with a human-readable status projection so
auth and API callers get a clear warning, lockout countdown, or nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from marketgate.ratelimit.window import WindowCheckResult, WindowCounter

logger = logging.getLogger(__name__)

WARNING_THRESHOLD = 2


class GateStatus(str, Enum):
    """Caller-facing gate status."""

    OK = "ok"
    WARNING = "warning"  # 1-2 attempts left
    LOCKED_OUT = "locked_out"


def gate_status(result: WindowCheckResult) -> GateStatus:
    """Classify a check result."""
    if not result.allowed:
        return GateStatus.LOCKED_OUT
    if 0 < result.remaining_attempts <= WARNING_THRESHOLD:
        return GateStatus.WARNING
    return GateStatus.OK


def rate_limit_message(result: WindowCheckResult) -> str | None:
    """
    Project a check result onto a message for the caller.

    Pure function: no clock, no state.

    Args:
        result: Result of WindowCounter.check

    Returns:
        Warning or lockout message, or None when nothing needs saying
    """
    if result.allowed:
        if 0 < result.remaining_attempts <= WARNING_THRESHOLD:
            return (
                f"Warning: {result.remaining_attempts} attempt(s) remaining "
                "before temporary lockout."
            )
        return None

    if result.lockout_remaining_minutes > 0:
        return (
            "Too many failed attempts. Please try again in "
            f"{result.lockout_remaining_minutes} minute(s)."
        )

    return "Too many failed attempts. Please try again later."


@dataclass
class GateDecision:
    """Check result together with its status projection."""

    identifier: str
    result: WindowCheckResult
    status: GateStatus
    message: str | None

    @property
    def allowed(self) -> bool:
        return self.result.allowed

    @classmethod
    def from_result(cls, identifier: str, result: WindowCheckResult) -> GateDecision:
        return cls(
            identifier=identifier,
            result=result,
            status=gate_status(result),
            message=rate_limit_message(result),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.result.to_dict(),
            "status": self.status.value,
            "message": self.message,
        }


class RateLimitGate:
    """
    Façade applying a WindowCounter to inbound identifiers.

    Usage:
        decision = await gate.check(email)
        if not decision.allowed:
            ...  # reject with decision.message
        ok = authenticate(...)
        await gate.record(email, success=ok)
    """

    def __init__(
        self,
        counter: WindowCounter | None = None,
        max_attempts: int = 5,
        window_seconds: float = 15 * 60,
        lockout_seconds: float = 30 * 60,
    ) -> None:
        """
        Initialize the gate.

        Args:
            counter: Counter to use (a new one is created if None)
            max_attempts: Default failure threshold
            window_seconds: Default window length
            lockout_seconds: Default lockout length
        """
        self._counter = counter or WindowCounter(
            max_attempts=max_attempts,
            window_seconds=window_seconds,
            lockout_seconds=lockout_seconds,
        )
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._lockout_seconds = lockout_seconds

    @classmethod
    def from_settings(cls, settings: Any, counter: WindowCounter | None = None) -> RateLimitGate:
        """Build a gate from application settings."""
        return cls(
            counter=counter,
            max_attempts=settings.auth_max_attempts,
            window_seconds=settings.auth_window_seconds,
            lockout_seconds=settings.auth_lockout_seconds,
        )

    @property
    def counter(self) -> WindowCounter:
        return self._counter

    async def check(
        self,
        identifier: str,
        max_attempts: int | None = None,
        window_seconds: float | None = None,
    ) -> GateDecision:
        """Check an identifier without recording anything."""
        result = await self._counter.check(
            identifier,
            max_attempts=max_attempts or self._max_attempts,
            window_seconds=window_seconds or self._window_seconds,
        )
        if not result.allowed:
            logger.info(
                f"Rejected locked-out identifier "
                f"({result.lockout_remaining_minutes} min remaining)"
            )
        return GateDecision.from_result(identifier, result)

    async def record_failure(
        self,
        identifier: str,
        max_attempts: int | None = None,
        window_seconds: float | None = None,
        lockout_seconds: float | None = None,
    ) -> GateDecision:
        """Record a failed attempt and return the updated decision."""
        await self._counter.record_failure(
            identifier,
            window_seconds=window_seconds or self._window_seconds,
            lockout_seconds=lockout_seconds if lockout_seconds is not None else self._lockout_seconds,
            max_attempts=max_attempts or self._max_attempts,
        )
        return await self.check(identifier, max_attempts=max_attempts, window_seconds=window_seconds)

    async def clear(self, identifier: str) -> bool:
        """Clear an identifier after a successful attempt."""
        return await self._counter.clear(identifier)

    async def record(self, identifier: str, success: bool, **limits: Any) -> GateDecision:
        """
        Record the outcome of an attempt.

        Success clears the identifier; failure counts toward lockout.
        """
        if success:
            await self.clear(identifier)
            return await self.check(
                identifier,
                max_attempts=limits.get("max_attempts"),
                window_seconds=limits.get("window_seconds"),
            )
        return await self.record_failure(identifier, **limits)
