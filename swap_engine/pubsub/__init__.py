"""
Order status distribution: Redis pub/sub channel and per-order relay.
"""

from swap_engine.pubsub.channel import StatusChannel, ORDER_UPDATES_CHANNEL
from swap_engine.pubsub.relay import SubscriptionRelay, ORDER_UPDATE_EVENT

__all__ = [
    "StatusChannel",
    "ORDER_UPDATES_CHANNEL",
    "SubscriptionRelay",
    "ORDER_UPDATE_EVENT",
]
