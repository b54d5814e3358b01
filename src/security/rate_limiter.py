"""Redis fixed-window rate limiter for per-user API actions.

One counter per (action, user) key: INCR on every attempt, EXPIRE set on the
first hit of a window. Used to cap verification-code sends, which cost
money and can be abused to spam a phone number.

Usage:
    from src.security.rate_limiter import rate_limiter

    await rate_limiter.enforce(f"rate:verify:{user.id}", limit=5, window=600)
"""

from __future__ import annotations

import logging
from typing import Any

from src.db.engine import redis_client
from src.errors import RateLimited

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, redis: Any) -> None:
        self._redis = redis

    async def check(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """Count one attempt against `key`.

        Returns (allowed, retry_after); retry_after is 0 when allowed,
        otherwise the seconds left in the current window (at least 1).
        Redis failures let the attempt through.
        """
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, window)

            if count > limit:
                ttl = await self._redis.ttl(key)
                return False, max(ttl, 1)
            return True, 0
        except Exception:
            logger.exception("Rate limiter Redis error for key %s", key)
            return True, 0

    async def enforce(self, key: str, limit: int, window: int) -> None:
        """Like check(), but raises RateLimited when over the limit."""
        allowed, retry_after = await self.check(key, limit, window)
        if not allowed:
            logger.info("Rate limit hit for %s (retry in %ds)", key, retry_after)
            raise RateLimited(retry_after, "Too many verification requests. Try again later.")


def verification_send_key(user_id: str) -> str:
    return f"rate:verify:{user_id}"


# Module-level singleton
rate_limiter = RateLimiter(redis_client)
