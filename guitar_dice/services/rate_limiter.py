"""
Rate Limiter - Fixed-window request throttling.

Process-local abuse throttling for mutation routes and the chat socket.
Not a quota: counters are lost on restart and are not shared between
workers.

Methods are synchronous and never await, so under asyncio a check and its
increment cannot interleave with another request.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from guitar_dice.config import settings
from guitar_dice.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitEntry:
    """Request count for one key in the current window."""

    count: int
    reset_time: float  # epoch seconds


class RateLimiter:
    """
    Fixed window limiter keyed by user id or client IP.

    Usage:
        limiter = RateLimiter("mutation", window_seconds=60, max_requests=20)
        if not limiter.is_allowed(user_id):
            raise RateLimitExceededError("dice roll", limiter.retry_after(user_id))
    """

    def __init__(
        self,
        name: str,
        window_seconds: float = 60,
        max_requests: int = 20,
        sweep_interval: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.sweep_interval = (
            sweep_interval if sweep_interval is not None else settings.rate_limit_sweep_interval
        )
        self._clock = clock
        self._store: dict[str, RateLimitEntry] = {}
        self._last_cleanup = clock()

    def is_allowed(self, key: str) -> bool:
        """Count a request for key; False once the window's budget is spent."""
        now = self._clock()
        self._cleanup_if_needed(now)

        entry = self._store.get(key)
        if entry is None or now > entry.reset_time:
            self._store[key] = RateLimitEntry(count=1, reset_time=now + self.window_seconds)
            return True

        if entry.count >= self.max_requests:
            return False

        entry.count += 1
        return True

    def remaining(self, key: str) -> int:
        entry = self._store.get(key)
        if entry is None or self._clock() > entry.reset_time:
            return self.max_requests
        return max(0, self.max_requests - entry.count)

    def reset_time(self, key: str) -> float:
        """Epoch seconds at which the current window for key ends."""
        now = self._clock()
        entry = self._store.get(key)
        if entry is None or now > entry.reset_time:
            return now + self.window_seconds
        return entry.reset_time

    def retry_after(self, key: str) -> int:
        """Whole seconds until key may retry."""
        return max(0, math.ceil(self.reset_time(key) - self._clock()))

    def cleanup(self) -> int:
        """Drop entries whose window has ended. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if now > entry.reset_time]
        for key in expired:
            del self._store[key]
        self._last_cleanup = now
        if expired:
            logger.debug("rate_limiter_swept", limiter=self.name, removed=len(expired))
        return len(expired)

    def clear(self) -> None:
        """Forget every key."""
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def _cleanup_if_needed(self, now: float) -> None:
        if now - self._last_cleanup >= self.sweep_interval:
            self.cleanup()


# Named limiters shared by the HTTP routes and the chat socket
mutation_rate_limiter = RateLimiter(
    "mutation",
    window_seconds=settings.mutation_rate_window,
    max_requests=settings.mutation_rate_max,
)
referral_rate_limiter = RateLimiter(
    "referral",
    window_seconds=settings.referral_rate_window,
    max_requests=settings.referral_rate_max,
)
socket_connection_limiter = RateLimiter(
    "socket_connection",
    window_seconds=settings.socket_connection_rate_window,
    max_requests=settings.socket_connection_rate_max,
)
socket_event_limiter = RateLimiter(
    "socket_event",
    window_seconds=settings.socket_event_rate_window,
    max_requests=settings.socket_event_rate_max,
)
