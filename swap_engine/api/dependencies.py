"""
Dependency injection for API routes.
"""
import asyncio
import logging
from typing import Optional

from swap_engine.config.settings import Config
from swap_engine.database import OrderStore, RedisManager
from swap_engine.jobs import JobQueue
from swap_engine.pubsub import StatusChannel, SubscriptionRelay
from swap_engine.tokens import TokenRegistry

logger = logging.getLogger(__name__)


class AppState:
    """
    Application state container.

    Holds references to the store, the queue and the status relay.
    """

    def __init__(self):
        self.config: Optional[Config] = None
        self.redis: Optional[RedisManager] = None
        self.store: Optional[OrderStore] = None
        self.queue: Optional[JobQueue] = None
        self.channel: Optional[StatusChannel] = None
        self.relay: Optional[SubscriptionRelay] = None
        self.registry: Optional[TokenRegistry] = None
        self.listener: Optional[asyncio.Task] = None
        self.ready: bool = False

    async def initialize(self, config: Config):
        """Connect to Redis and PostgreSQL and build the services."""
        self.config = config
        self.registry = TokenRegistry.from_config(config.extra_tokens)

        self.redis = RedisManager(config.redis_url)
        await self.redis.connect()

        self.store = OrderStore(config)
        await self.store.connect()

        self.queue = JobQueue(
            self.redis.client,
            name=config.queue_name,
            attempts=config.job_attempts,
            backoff_seconds=config.job_backoff_seconds,
            lock_seconds=config.job_lock_seconds,
            keep_completed=config.keep_completed_jobs,
            keep_failed=config.keep_failed_jobs,
        )
        self.channel = StatusChannel(self.redis.client)
        self.relay = SubscriptionRelay()
        self.ready = True

    def start_listener(self):
        """Forward channel updates to the relay in the background."""
        if self.listener is None or self.listener.done():
            self.listener = asyncio.create_task(self.channel.listen(self.relay.handle))

    async def close(self):
        if self.listener:
            self.channel.stop()
            self.listener.cancel()
            await asyncio.gather(self.listener, return_exceptions=True)
            self.listener = None
        if self.store:
            await self.store.disconnect()
        if self.redis:
            await self.redis.disconnect()
        self.ready = False


# Global app state
app_state = AppState()


def get_config() -> Config:
    """Get application configuration."""
    if app_state.config is None:
        app_state.config = Config()
    return app_state.config


def get_store() -> OrderStore:
    return app_state.store


def get_queue() -> JobQueue:
    return app_state.queue


def get_channel() -> StatusChannel:
    return app_state.channel


def get_relay() -> SubscriptionRelay:
    return app_state.relay


def get_registry() -> TokenRegistry:
    if app_state.registry is None:
        app_state.registry = TokenRegistry.from_config(get_config().extra_tokens)
    return app_state.registry


def get_redis() -> RedisManager:
    return app_state.redis
