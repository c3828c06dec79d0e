"""
Worker process entry point.
"""
import asyncio
import signal
import sys
from typing import Optional

from swap_engine.config.settings import Config
from swap_engine.database import OrderStore, RedisManager
from swap_engine.dex import DexRouter, MeteoraAdapter, RaydiumAdapter
from swap_engine.exceptions import ConfigurationError
from swap_engine.execution import OrderProcessor, SettlementClient, create_settlement
from swap_engine.jobs import JobQueue, OrderReconciler, RateLimiter, WorkerPool
from swap_engine.logging import logger, setup_logging
from swap_engine.pubsub import StatusChannel
from swap_engine.tokens import TokenRegistry


class WorkerService:
    """Order worker application."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.running = False

        # Components
        self.redis: Optional[RedisManager] = None
        self.store: Optional[OrderStore] = None
        self.router: Optional[DexRouter] = None
        self.settlement: Optional[SettlementClient] = None
        self.pool: Optional[WorkerPool] = None

    async def setup(self):
        """Initialize all components."""
        logger.info("Initializing swap engine worker...")

        is_valid, msg = self.config.validate_settlement()
        if not is_valid:
            raise ConfigurationError(msg)
        logger.info(msg)

        # 1. Storage and messaging
        # Each worker holds a connection during its blocking pull
        self.redis = RedisManager(
            self.config.redis_url,
            max_connections=self.config.worker_concurrency * 2 + 10,
        )
        await self.redis.connect()

        self.store = OrderStore(self.config)
        await self.store.connect()

        # 2. Routing
        registry = TokenRegistry.from_config(self.config.extra_tokens)
        timeout = self.config.quote_timeout_seconds
        adapters = [
            RaydiumAdapter(
                registry,
                api_url=self.config.raydium_api_url,
                trade_api_url=self.config.raydium_trade_api_url,
                timeout=timeout,
            ),
            MeteoraAdapter(registry, api_url=self.config.meteora_api_url, timeout=timeout),
        ]
        self.router = DexRouter(
            adapters,
            registry,
            venue_priority=self.config.venue_priority,
            quote_timeout=timeout,
        )
        self.settlement = create_settlement(self.config)

        # 3. Execution
        channel = StatusChannel(self.redis.client)
        processor = OrderProcessor(
            store=self.store,
            router=self.router,
            registry=registry,
            settlement=self.settlement,
            channel=channel,
            subscribe_grace=self.config.subscribe_grace_seconds,
        )
        queue = JobQueue(
            self.redis.client,
            name=self.config.queue_name,
            attempts=self.config.job_attempts,
            backoff_seconds=self.config.job_backoff_seconds,
            lock_seconds=self.config.job_lock_seconds,
            keep_completed=self.config.keep_completed_jobs,
            keep_failed=self.config.keep_failed_jobs,
        )
        reconciler = OrderReconciler(
            self.store,
            queue,
            processor,
            stale_after=self.config.stale_order_timeout_seconds,
        )
        self.pool = WorkerPool(
            queue,
            processor,
            concurrency=self.config.worker_concurrency,
            limiter=RateLimiter(
                self.redis.client,
                queue.limiter_key,
                max_jobs=self.config.rate_limit_max_jobs,
                window_seconds=self.config.rate_limit_window_seconds,
            ),
            reconciler=reconciler,
            reconcile_interval=self.config.reconcile_interval_seconds,
        )

    async def start(self):
        """Run the worker pool until stopped."""
        if self.running:
            return

        self.running = True
        await self.pool.start()
        logger.info("Worker is running. Press Ctrl+C to stop.")

        # Keep alive
        while self.running:
            await asyncio.sleep(1)

    async def stop(self):
        """Graceful shutdown."""
        logger.info("Stopping worker...")
        self.running = False

        if self.pool:
            await self.pool.stop()
        if self.router:
            await self.router.close()
        if self.settlement:
            await self.settlement.close()
        if self.store:
            await self.store.disconnect()
        if self.redis:
            await self.redis.disconnect()

        logger.info("Worker stopped.")


async def main():
    config = Config()
    setup_logging(config)
    service = WorkerService(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: setattr(service, "running", False))

    try:
        await service.setup()
        await service.start()
    except Exception as e:
        logger.exception(f"Critical error: {e}")
        await service.stop()
        sys.exit(1)

    await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
