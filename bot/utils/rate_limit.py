from __future__ import annotations

import time
from dataclasses import dataclass

from services.cache import CacheBackend


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    current: int
    limit: int
    retry_after: int = 0


class DistributedRateLimiter:
    def __init__(self, cache: CacheBackend) -> None:
        self.cache = cache

    async def hit(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: int,
        cooldown_seconds: int = 0,
    ) -> RateLimitResult:
        """Count one event for ``key``.

        Going over ``limit`` inside the window starts a cooldown during which
        every hit is refused, when ``cooldown_seconds`` is set.
        """
        cooldown_key = f"{key}:cooldown"
        if cooldown_seconds:
            cooldown_until = await self.cache.get(cooldown_key)
            if cooldown_until:
                remaining = max(1, int(cooldown_until) - int(time.time()))
                return RateLimitResult(allowed=False, current=limit + 1, limit=limit, retry_after=remaining)

        current = await self.cache.incr(key, ttl=window_seconds)
        if current <= limit:
            return RateLimitResult(allowed=True, current=current, limit=limit)

        if cooldown_seconds:
            await self.cache.set(cooldown_key, int(time.time()) + cooldown_seconds, ttl=cooldown_seconds)
            await self.cache.delete(key)
            return RateLimitResult(allowed=False, current=current, limit=limit, retry_after=cooldown_seconds)
        return RateLimitResult(allowed=False, current=current, limit=limit, retry_after=window_seconds)
