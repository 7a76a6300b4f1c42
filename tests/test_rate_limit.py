"""
Unit tests for per-user rate limiting.

Tests fixed-window counting, window reset and refusal with a controllable
clock.
"""

import threading

import pytest

from adventure_forge.core.errors import RateLimitExceeded
from adventure_forge.core.rate_limit import (
    DEFAULT_RATE_LIMITS,
    HOUR_SECONDS,
    RateLimit,
    RateLimiter,
)
from adventure_forge.core.requests import OperationKind


class FakeClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestRateLimit:
    """Test limit definitions."""

    def test_default_limits(self):
        """Test that default hourly limits match the per-operation allowances."""
        assert DEFAULT_RATE_LIMITS[OperationKind.SCAFFOLD] == RateLimit(10, HOUR_SECONDS)
        assert DEFAULT_RATE_LIMITS[OperationKind.SCENE_EXPANSION] == RateLimit(50, HOUR_SECONDS)
        assert DEFAULT_RATE_LIMITS[OperationKind.MOVEMENT_REGENERATION] == RateLimit(30, HOUR_SECONDS)
        assert DEFAULT_RATE_LIMITS[OperationKind.REFINEMENT] == RateLimit(100, HOUR_SECONDS)

    @pytest.mark.parametrize("max_requests, window_seconds", [(0, 60), (-1, 60), (5, 0)])
    def test_rejects_non_positive_values(self, max_requests, window_seconds):
        """Test that limits and windows must be positive."""
        with pytest.raises(ValueError, match="must be > 0"):
            RateLimit(max_requests, window_seconds)


class TestRateLimiter:
    """Test fixed-window counting."""

    def setup_method(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter({OperationKind.SCAFFOLD: RateLimit(3, 60)}, clock=self.clock)

    def test_allows_up_to_limit(self):
        """Test that requests are allowed until the window is full."""
        remaining = [self.limiter.check("u1", OperationKind.SCAFFOLD).remaining for _ in range(3)]

        assert remaining == [2, 1, 0]
        status = self.limiter.check("u1", OperationKind.SCAFFOLD)
        assert not status.allowed
        assert status.remaining == 0
        assert status.retry_after == 60

    def test_enforce_raises_with_retry_after(self):
        """Test that enforce raises once the window is full, reporting seconds until reset."""
        for _ in range(3):
            self.limiter.enforce("u1", OperationKind.SCAFFOLD)
        self.clock.advance(15.5)

        with pytest.raises(RateLimitExceeded, match="Try again in 45 seconds") as exc_info:
            self.limiter.enforce("u1", OperationKind.SCAFFOLD)

        assert exc_info.value.operation == "scaffold"
        assert exc_info.value.retry_after == 45

    def test_refused_requests_are_not_counted(self):
        """Test that refusals do not extend or refill the window."""
        for _ in range(3):
            self.limiter.check("u1", OperationKind.SCAFFOLD)
        for _ in range(5):
            assert not self.limiter.check("u1", OperationKind.SCAFFOLD).allowed

        self.clock.advance(60)

        assert self.limiter.remaining("u1", OperationKind.SCAFFOLD) == 3

    def test_window_resets(self):
        """Test that a full window accepts requests again once it expires."""
        for _ in range(3):
            self.limiter.check("u1", OperationKind.SCAFFOLD)
        self.clock.advance(59)
        assert not self.limiter.check("u1", OperationKind.SCAFFOLD).allowed

        self.clock.advance(1)
        status = self.limiter.check("u1", OperationKind.SCAFFOLD)

        assert status.allowed
        assert status.remaining == 2
        assert status.reset_at == self.clock.now + 60

    def test_window_starts_at_first_request(self):
        """Test that the window is fixed from the first request, not slid by later ones."""
        first = self.limiter.check("u1", OperationKind.SCAFFOLD)
        self.clock.advance(30)
        second = self.limiter.check("u1", OperationKind.SCAFFOLD)

        assert second.reset_at == first.reset_at

    def test_windows_are_per_user_and_operation(self):
        """Test that each user and operation has its own window."""
        limiter = RateLimiter(
            {
                OperationKind.SCAFFOLD: RateLimit(1, 60),
                OperationKind.REFINEMENT: RateLimit(1, 60),
            },
            clock=self.clock
        )
        limiter.enforce("u1", OperationKind.SCAFFOLD)

        limiter.enforce("u2", OperationKind.SCAFFOLD)
        limiter.enforce("u1", OperationKind.REFINEMENT)
        with pytest.raises(RateLimitExceeded):
            limiter.enforce("u1", OperationKind.SCAFFOLD)

    def test_unconfigured_operation_is_unlimited(self):
        """Test that operations without a limit are always allowed."""
        for _ in range(20):
            status = self.limiter.enforce("u1", OperationKind.REFINEMENT)

        assert status.allowed
        assert status.remaining == -1
        assert self.limiter.remaining("u1", OperationKind.REFINEMENT) == -1

    def test_remaining_does_not_count(self):
        """Test that reading the remaining allowance leaves the window untouched."""
        self.limiter.check("u1", OperationKind.SCAFFOLD)

        assert self.limiter.remaining("u1", OperationKind.SCAFFOLD) == 2
        assert self.limiter.remaining("u1", OperationKind.SCAFFOLD) == 2
        assert self.limiter.remaining("nobody", OperationKind.SCAFFOLD) == 3

    def test_concurrent_checks_never_exceed_limit(self):
        """Test that concurrent callers cannot push a window past its limit."""
        limiter = RateLimiter({OperationKind.SCAFFOLD: RateLimit(5, 60)}, clock=self.clock)
        allowed = []
        barrier = threading.Barrier(10)

        def worker():
            barrier.wait()
            allowed.append(limiter.check("u1", OperationKind.SCAFFOLD).allowed)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert allowed.count(True) == 5
        assert allowed.count(False) == 5
