"""
Reconciliation of orders whose job died.

A crashed worker can leave an order in a non-terminal status with no job left
to finish it. The sweep moves such orders to ``failed`` so every caller
eventually observes a terminal status.
"""
import logging
from datetime import timedelta
from typing import List

from swap_engine.exceptions import SwapEngineError
from swap_engine.jobs.queue import JobQueue

logger = logging.getLogger(__name__)


class OrderReconciler:
    """Fails stale, non-terminal orders that no live job will pick up."""

    def __init__(self, store, queue: JobQueue, processor, stale_after: float = 600.0, batch_size: int = 100):
        self.store = store
        self.queue = queue
        self.processor = processor
        self.stale_after = stale_after
        self.batch_size = batch_size

    async def sweep(self) -> List[str]:
        """
        Run one pass.

        Returns:
            Ids of the orders moved to ``failed``
        """
        stale = await self.store.get_stale_orders(timedelta(seconds=self.stale_after), self.batch_size)
        failed: List[str] = []

        for order in stale:
            if await self.queue.is_live(order.id):
                continue
            message = (
                f"Order timed out in {order.status.value} "
                f"after {int(self.stale_after)}s without progress"
            )
            try:
                await self.processor.fail(order.id, message)
                failed.append(order.id)
            except SwapEngineError as e:
                logger.warning(f"Could not reconcile order {order.id}: {e}")

        if failed:
            logger.warning(f"Reconciled {len(failed)} stuck order(s): {failed}")
        return failed
