"""
Per-order subscription relay.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, List, Protocol, Set

from swap_engine.models import StatusUpdate, is_regression

logger = logging.getLogger(__name__)

ORDER_UPDATE_EVENT = "order:update"


class Subscriber(Protocol):
    """Anything that can receive a JSON message (e.g. a FastAPI WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


class SubscriptionRelay:
    """
    Fans channel updates out to the subscribers of each order.

    Subscribers join and leave groups keyed by order id. While a group has
    members the relay keeps a merged view of the order, so every message sent
    carries all fields known so far. Updates that would move the status
    backwards are dropped. Joining does not replay past updates.
    """

    def __init__(self):
        self.groups: Dict[str, List[Subscriber]] = defaultdict(list)
        self.views: Dict[str, StatusUpdate] = {}

    def subscribe(self, order_id: str, subscriber: Subscriber) -> None:
        """
        Add subscriber to an order's group.

        Args:
            order_id: Order to follow
            subscriber: Connection receiving updates
        """
        if subscriber not in self.groups[order_id]:
            self.groups[order_id].append(subscriber)
            logger.info(f"Subscriber joined {order_id} ({len(self.groups[order_id])} total)")

    def unsubscribe(self, order_id: str, subscriber: Subscriber) -> None:
        group = self.groups.get(order_id)
        if not group or subscriber not in group:
            return
        group.remove(subscriber)
        logger.info(f"Subscriber left {order_id}")
        if not group:
            del self.groups[order_id]
            self.views.pop(order_id, None)

    def disconnect(self, subscriber: Subscriber) -> None:
        """Remove subscriber from every group."""
        for order_id in [oid for oid, group in self.groups.items() if subscriber in group]:
            self.unsubscribe(order_id, subscriber)

    def subscriptions(self, subscriber: Subscriber) -> Set[str]:
        return {oid for oid, group in self.groups.items() if subscriber in group}

    def get_subscriber_count(self, order_id: str = None) -> int:
        if order_id:
            return len(self.groups.get(order_id, []))
        return sum(len(group) for group in self.groups.values())

    async def handle(self, update: StatusUpdate) -> int:
        """
        Forward an update to the order's group.

        Returns:
            Number of subscribers the update was delivered to
        """
        order_id = update.order_id
        group = self.groups.get(order_id)
        if not group:
            return 0

        view = self.views.get(order_id)
        if view is not None and is_regression(view.status, update.status):
            logger.debug(f"Dropping stale {update.status.value} for {order_id} (at {view.status.value})")
            return 0

        merged = view.merge(update) if view is not None else update
        self.views[order_id] = merged
        message = {"event": ORDER_UPDATE_EVENT, "data": merged.to_wire()}

        delivered = 0
        dead_subscribers = []
        for subscriber in list(group):
            try:
                await subscriber.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Failed to send update for {order_id}: {e}")
                dead_subscribers.append(subscriber)

        # Clean up dead subscribers
        for subscriber in dead_subscribers:
            self.disconnect(subscriber)

        return delivered
