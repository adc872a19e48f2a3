"""
Per-client rate limiting.

Sliding-window counter held in the shared key-value store (10 requests per
60 seconds per client IP by default). The limiter fails open: if the store is
unreachable the request is allowed and the failure is logged.
"""

import logging
from dataclasses import dataclass

from shared.redis_client import KeyValueStore

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "rl:chat:"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_after: int


class RateLimiter:
    """
    Sliding-window rate limiter.

    Attributes:
        store: Remote store providing an atomic sliding-window increment
        limit: Requests allowed per window
        window_seconds: Window length
        fail_open_remaining: ``remaining`` reported when the store is down
    """

    def __init__(self, store: KeyValueStore, limit: int = 10, window_seconds: int = 60,
                 fail_open_remaining: int = 99):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.fail_open_remaining = fail_open_remaining

    def key_for(self, identifier: str) -> str:
        return f"{RATE_LIMIT_PREFIX}ip_{identifier}"

    async def check(self, identifier: str) -> RateLimitResult:
        """Count one request for ``identifier`` and report whether it may proceed."""
        try:
            allowed, count = await self.store.sliding_window_increment(
                self.key_for(identifier), self.limit, self.window_seconds
            )
        except Exception as e:
            logger.error(f"Rate limit check failed, allowing request: {e}")
            return RateLimitResult(
                allowed=True,
                remaining=self.fail_open_remaining,
                reset_after=self.window_seconds,
            )

        remaining = max(0, self.limit - count)
        if not allowed:
            logger.info(f"Rate limit exceeded for {identifier} ({count}/{self.limit} in {self.window_seconds}s)")
        return RateLimitResult(allowed=allowed, remaining=remaining, reset_after=self.window_seconds)
