"""
Per-user request rate limiting.

Fixed-window counters keyed by ``user:operation``. Windows live in process
memory; a limiter is built once at startup and shared by every request.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .errors import RateLimitExceeded
from .requests import OperationKind

HOUR_SECONDS = 60 * 60


@dataclass(frozen=True)
class RateLimit:
    """Allowed requests per window."""
    max_requests: int
    window_seconds: float

    def __post_init__(self):
        """Validate limit values are positive."""
        if self.max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")


@dataclass(frozen=True)
class RateLimitStatus:
    """Outcome of one rate limit check."""
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None


DEFAULT_RATE_LIMITS: Dict[OperationKind, RateLimit] = {
    OperationKind.SCAFFOLD: RateLimit(10, HOUR_SECONDS),
    OperationKind.SCENE_EXPANSION: RateLimit(50, HOUR_SECONDS),
    OperationKind.MOVEMENT_REGENERATION: RateLimit(30, HOUR_SECONDS),
    OperationKind.REFINEMENT: RateLimit(100, HOUR_SECONDS),
}


class RateLimiter:
    """Fixed-window request counter per user and operation kind."""

    def __init__(
        self,
        limits: Optional[Dict[OperationKind, RateLimit]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.limits = dict(DEFAULT_RATE_LIMITS if limits is None else limits)
        self.clock = clock
        self._windows: Dict[Tuple[str, OperationKind], Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check(self, user_id: str, kind: OperationKind) -> RateLimitStatus:
        """Count one request and report whether it is allowed.

        A refused request does not count against the window.
        Operations without a configured limit are always allowed.
        """
        limit = self.limits.get(kind)
        now = self.clock()
        if limit is None:
            return RateLimitStatus(allowed=True, remaining=-1, reset_at=now)

        key = (user_id, kind)
        with self._lock:
            self._drop_expired(now)
            count, reset_at = self._windows.get(key, (0, now + limit.window_seconds))
            if count >= limit.max_requests:
                return RateLimitStatus(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(math.ceil(reset_at - now), 1)
                )
            self._windows[key] = (count + 1, reset_at)
        return RateLimitStatus(
            allowed=True,
            remaining=limit.max_requests - count - 1,
            reset_at=reset_at
        )

    def enforce(self, user_id: str, kind: OperationKind) -> RateLimitStatus:
        """Count one request.

        Raises:
            RateLimitExceeded: If the user's window for ``kind`` is full
        """
        status = self.check(user_id, kind)
        if not status.allowed:
            raise RateLimitExceeded(kind.value, status.retry_after)
        return status

    def remaining(self, user_id: str, kind: OperationKind) -> int:
        """Requests left in the current window without counting one."""
        limit = self.limits.get(kind)
        if limit is None:
            return -1
        now = self.clock()
        with self._lock:
            self._drop_expired(now)
            count, _ = self._windows.get((user_id, kind), (0, 0.0))
        return max(limit.max_requests - count, 0)

    def _drop_expired(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]
