"""Tests for the rate limit gate and its message projection."""

import pytest

from marketgate.config import Settings
from marketgate.ratelimit import (
    GateStatus,
    RateLimitGate,
    WindowCheckResult,
    WindowCounter,
    rate_limit_message,
)
from marketgate.ratelimit.gate import gate_status


class TestRateLimitMessage:
    """Tests for the pure message projection."""

    def test_no_message_with_plenty_left(self) -> None:
        """Test no message when more than two attempts remain."""
        result = WindowCheckResult(allowed=True, remaining_attempts=3)
        assert rate_limit_message(result) is None
        assert gate_status(result) == GateStatus.OK

    @pytest.mark.parametrize("remaining", [1, 2])
    def test_warning_near_limit(self, remaining: int) -> None:
        """Test a warning when one or two attempts remain."""
        result = WindowCheckResult(allowed=True, remaining_attempts=remaining)

        assert rate_limit_message(result) == (
            f"Warning: {remaining} attempt(s) remaining before temporary lockout."
        )
        assert gate_status(result) == GateStatus.WARNING

    def test_no_warning_at_zero_remaining(self) -> None:
        """Test zero remaining is not a warning."""
        result = WindowCheckResult(allowed=True, remaining_attempts=0)
        assert rate_limit_message(result) is None

    def test_lockout_countdown(self) -> None:
        """Test the lockout message carries the whole-minute countdown."""
        result = WindowCheckResult(allowed=False, remaining_attempts=0, lockout_remaining_minutes=12)

        assert rate_limit_message(result) == (
            "Too many failed attempts. Please try again in 12 minute(s)."
        )
        assert gate_status(result) == GateStatus.LOCKED_OUT

    def test_lockout_without_countdown(self) -> None:
        """Test a denial without a countdown uses the generic lockout message."""
        result = WindowCheckResult(allowed=False, remaining_attempts=0)
        assert rate_limit_message(result) == "Too many failed attempts. Please try again later."


class TestRateLimitGate:
    """Tests for RateLimitGate."""

    @pytest.fixture
    def gate(self, clock) -> RateLimitGate:
        """Gate with auth defaults on a fake clock."""
        return RateLimitGate(counter=WindowCounter(clock=clock))

    @pytest.mark.asyncio
    async def test_fresh_identifier(self, gate: RateLimitGate) -> None:
        """Test a fresh identifier is allowed with no message."""
        decision = await gate.check("alice@example.com")

        assert decision.allowed is True
        assert decision.status == GateStatus.OK
        assert decision.message is None

    @pytest.mark.asyncio
    async def test_warning_then_lockout(self, gate: RateLimitGate) -> None:
        """Test failures progress from warning to lockout."""
        for _ in range(3):
            decision = await gate.record_failure("alice@example.com")

        assert decision.status == GateStatus.WARNING
        assert decision.result.remaining_attempts == 2

        for _ in range(2):
            decision = await gate.record_failure("alice@example.com")

        assert decision.allowed is False
        assert decision.status == GateStatus.LOCKED_OUT
        assert decision.message == "Too many failed attempts. Please try again in 30 minute(s)."

    @pytest.mark.asyncio
    async def test_record_success_clears(self, gate: RateLimitGate) -> None:
        """Test recording a success clears previous failures."""
        for _ in range(4):
            await gate.record("alice@example.com", success=False)

        decision = await gate.record("alice@example.com", success=True)

        assert decision.allowed is True
        assert decision.result.remaining_attempts == 5

    @pytest.mark.asyncio
    async def test_unlocks_after_lockout(self, gate: RateLimitGate, clock) -> None:
        """Test the identifier is allowed again after the lockout."""
        for _ in range(5):
            await gate.record_failure("alice@example.com")

        clock.advance(30 * 60)
        decision = await gate.check("alice@example.com")

        assert decision.allowed is True
        assert decision.result.remaining_attempts == 5

    @pytest.mark.asyncio
    async def test_custom_limits(self, gate: RateLimitGate) -> None:
        """Test per-call limits."""
        decision = await gate.record_failure("api-key", max_attempts=2, lockout_seconds=90)
        assert decision.result.remaining_attempts == 1

        decision = await gate.record_failure("api-key", max_attempts=2, lockout_seconds=90)
        assert decision.allowed is False
        assert decision.result.lockout_remaining_minutes == 2

    @pytest.mark.asyncio
    async def test_to_dict(self, gate: RateLimitGate) -> None:
        """Test the decision serializes result, status and message."""
        decision = await gate.check("alice@example.com")

        assert decision.to_dict() == {
            "allowed": True,
            "remaining_attempts": 5,
            "lockout_remaining_minutes": 0,
            "status": "ok",
            "message": None,
        }

    def test_from_settings(self) -> None:
        """Test defaults are taken from settings."""
        settings = Settings(auth_max_attempts=3, auth_window_seconds=60, auth_lockout_seconds=120)
        gate = RateLimitGate.from_settings(settings)

        assert gate.counter.max_attempts == 3
