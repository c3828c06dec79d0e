import logging
from typing import Optional
import redis.asyncio as redis

logger = logging.getLogger(__name__)

class RedisManager:
    """
    Shared Redis connection for the job queue and the status channel.

    Blocking queue pulls hold a connection for the length of the block, so the
    pool has to be larger than the worker concurrency.
    """

    def __init__(self, url: str = "redis://localhost:6379/0", max_connections: int = 50,
                 client: Optional[redis.Redis] = None):
        self.url = url
        self.max_connections = max_connections
        self._redis: Optional[redis.Redis] = client

    @property
    def client(self) -> redis.Redis:
        if self._redis is None:
            raise RuntimeError("Redis is not connected")
        return self._redis

    async def connect(self):
        """Initialize Redis connection."""
        if self._redis:
            return

        try:
            self._redis = redis.Redis.from_url(
                self.url,
                decode_responses=True,
                max_connections=self.max_connections,
            )
            await self._redis.ping()
            logger.info("Connected to Redis")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def disconnect(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Disconnected from Redis")

    async def health_check(self) -> bool:
        if not self._redis:
            return False
        try:
            await self._redis.ping()
            return True
        except Exception:
            return False
