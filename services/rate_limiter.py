"""Fixed-window rate limiting on top of the session store.

Counts events in discrete windows: the first hit creates the window and its
TTL, later hits only increment. Bursts straddling a window boundary can reach
twice the limit, which is acceptable for throttling login attempts.
"""

import time
import logfire

from schema.security import RateLimitResult
from security.errors import StoreUnavailable
from services.session_store import SessionStore


class RateLimiter:
    """Counts attempts per key. Fails open when the store is unavailable."""

    def __init__(self, store: SessionStore):
        self.store = store

    async def check_rate_limit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Record one attempt for `key` and report whether it went over `limit`.

        Args:
            key (str): Counter identifier, e.g. `auth:alice`.
            limit (int): Attempts allowed per window.
            window_seconds (int): Window length in seconds.

        Returns:
            RateLimitResult: Count, remaining budget and whether the limit was exceeded.
        """
        now = int(time.time())

        try:
            count, ttl = await self.store.increment_window(key, window_seconds)
        except StoreUnavailable:
            logfire.warning(f"Rate limit check for {key} skipped, session store unavailable")
            return RateLimitResult(
                count=0,
                limit=limit,
                remaining=limit,
                exceeded=False,
                reset_at=now + window_seconds,
            )

        if ttl < 0:
            ttl = window_seconds

        result = RateLimitResult(
            count=count,
            limit=limit,
            remaining=max(0, limit - count),
            exceeded=count > limit,
            reset_at=now + ttl,
        )

        if result.exceeded:
            logfire.warning(f"Rate limit exceeded for {key}: {count}/{limit}")

        return result

    async def clear(self, key: str) -> None:
        """Reset the counter for `key` immediately."""
        try:
            await self.store.delete_counter(key)
        except StoreUnavailable:
            logfire.warning(f"Could not clear rate limit for {key}, session store unavailable")
