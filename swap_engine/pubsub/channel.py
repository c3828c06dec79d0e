"""
Redis pub/sub status channel.

Workers publish order status updates here; API processes listen and hand them
to the subscription relay. Delivery is at-most-once: a message published while
no listener is connected is lost, and the order store stays the authoritative
record clients fall back to.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis

from swap_engine.models import StatusUpdate, decode_envelope, encode_envelope

logger = logging.getLogger(__name__)

ORDER_UPDATES_CHANNEL = "order:updates"

UpdateHandler = Callable[[StatusUpdate], Awaitable[Any]]


class StatusChannel:
    """Publish and listen for order status updates."""

    def __init__(self, client: redis.Redis, channel: str = ORDER_UPDATES_CHANNEL):
        self._redis = client
        self.channel = channel
        self._running = False

    async def publish(self, order_id: str, update: StatusUpdate) -> bool:
        """
        Fire-and-forget publish.

        Never raises; failures are logged.

        Returns:
            True if Redis accepted the message
        """
        if update.order_id != order_id:
            logger.error(f"Refusing to publish update for {update.order_id} under {order_id}")
            return False
        try:
            receivers = await self._redis.publish(self.channel, encode_envelope(update))
            logger.debug(f"Published {order_id} {update.status.value} to {receivers} listener(s)")
            return True
        except Exception as e:
            logger.error(f"Failed to publish update for {order_id}: {e}")
            return False

    async def listen(self, handler: UpdateHandler, poll_timeout: float = 1.0) -> None:
        """
        Run the subscriber loop until ``stop()`` or cancellation.

        Uses a dedicated pub/sub connection. Malformed messages are logged and
        skipped, as are handler errors.
        """
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel)
        self._running = True
        logger.info(f"Listening for status updates on {self.channel}")

        try:
            while self._running:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=poll_timeout)
                if message is None:
                    # get_message returns immediately when not yet subscribed
                    await asyncio.sleep(0)
                    continue
                if message.get("type") != "message":
                    continue

                try:
                    update = decode_envelope(message["data"])
                except (ValueError, TypeError, KeyError) as e:
                    logger.warning(f"Skipping malformed status message: {e}")
                    continue

                try:
                    await handler(update)
                except Exception as e:
                    logger.error(f"Status handler failed for {update.order_id}: {e}")
        finally:
            self._running = False
            try:
                await pubsub.unsubscribe(self.channel)
                await pubsub.aclose()
            except Exception as e:
                logger.warning(f"Error closing pub/sub connection: {e}")
            logger.info(f"Stopped listening on {self.channel}")

    def stop(self) -> None:
        self._running = False

    @property
    def is_listening(self) -> bool:
        return self._running
