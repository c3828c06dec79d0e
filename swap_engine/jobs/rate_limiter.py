"""
Job start rate limiter.

Sliding window over job start times kept in a Redis sorted set, so the limit
holds across every worker process consuming the same queue.
"""

import asyncio
import time
import logging
import uuid
from typing import Callable

import redis.asyncio as redis

logger = logging.getLogger(__name__)

# KEYS: window zset
# ARGV: now ms, window ms, max starts, slot token
# Returns -1 when the slot was taken, else ms until the oldest start leaves the window.
ACQUIRE_SCRIPT = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
redis.call("zremrangebyscore", KEYS[1], "-inf", now - window)
if redis.call("zcard", KEYS[1]) < tonumber(ARGV[3]) then
    redis.call("zadd", KEYS[1], now, ARGV[4])
    redis.call("pexpire", KEYS[1], window)
    return -1
end
local oldest = redis.call("zrange", KEYS[1], 0, 0, "WITHSCORES")
return tonumber(oldest[2]) + window - now
"""


class RateLimiter:
    """
    Sliding window limit on how many jobs may start.

    At most ``max_jobs`` acquisitions succeed within any ``window_seconds``
    span, counted over all processes sharing ``key``; further callers wait
    until the oldest start leaves the window.

    Example:
        limiter = RateLimiter(client, "order-queue:limiter", max_jobs=100, window_seconds=60)
        slot = await limiter.acquire()
    """

    def __init__(
        self,
        client: redis.Redis,
        key: str = "order-queue:limiter",
        max_jobs: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        if max_jobs < 1:
            raise ValueError("max_jobs must be at least 1")
        self._redis = client
        self.key = key
        self.max_jobs = max_jobs
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def _window_ms(self) -> int:
        return int(self.window_seconds * 1000)

    async def _expire(self) -> None:
        await self._redis.zremrangebyscore(self.key, "-inf", self._now_ms() - self._window_ms)

    async def get_remaining(self) -> int:
        """Starts still available in the current window."""
        await self._expire()
        return max(0, self.max_jobs - await self._redis.zcard(self.key))

    async def get_wait_time(self) -> float:
        """Seconds until a start is allowed (0 if one is allowed now)."""
        await self._expire()
        if await self._redis.zcard(self.key) < self.max_jobs:
            return 0.0
        oldest = await self._redis.zrange(self.key, 0, 0, withscores=True)
        if not oldest:
            return 0.0
        return max(0.0, (oldest[0][1] + self._window_ms - self._now_ms()) / 1000)

    async def acquire(self) -> str:
        """
        Wait for a start slot and take it.

        Waiters in this process are served one at a time in arrival order.

        Returns:
            The slot token, for ``refund``
        """
        async with self._lock:
            while True:
                now_ms = self._now_ms()
                token = f"{now_ms}-{uuid.uuid4().hex[:12]}"
                wait_ms = int(await self._redis.eval(
                    ACQUIRE_SCRIPT, 1, self.key, now_ms, self._window_ms, self.max_jobs, token,
                ))
                if wait_ms < 0:
                    return token
                logger.warning(f"Job rate limit reached, waiting {wait_ms / 1000:.2f}s")
                await asyncio.sleep(wait_ms / 1000)

    async def refund(self, token: str) -> bool:
        """Give back a slot taken by ``acquire`` (e.g. a pull that found no job)."""
        return bool(await self._redis.zrem(self.key, token))

    async def reset(self) -> None:
        await self._redis.delete(self.key)

    def __repr__(self) -> str:
        return (
            f"RateLimiter(key={self.key!r}, max_jobs={self.max_jobs}, "
            f"window_seconds={self.window_seconds})"
        )
