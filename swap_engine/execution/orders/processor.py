"""
Order processor.

Drives one order through routing, building, submission and confirmation.
Work is resumable: a retried job picks up from the status persisted by the
previous attempt instead of starting over.
"""
import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from swap_engine.dex import DexRouter, RoutingDecision
from swap_engine.exceptions import (
    InvalidTransitionError,
    JobLockLostError,
    OrderNotFoundError,
    QueueExhaustedError,
    SwapEngineError,
)
from swap_engine.execution.orders.models import Order
from swap_engine.execution.settlement import SettlementClient
from swap_engine.logging import logger, EngineLogger
from swap_engine.models import OrderJob, OrderStatus, StatusUpdate
from swap_engine.pubsub import StatusChannel
from swap_engine.tokens import TokenRegistry


def is_retryable(error: BaseException) -> bool:
    """Engine errors declare it; anything unexpected is treated as transient."""
    if isinstance(error, SwapEngineError):
        return error.retryable
    return True


class OrderProcessor:
    """
    Per-job execution pipeline.

    Every transition is persisted first and then broadcast, so subscribers see
    updates in the order they were stored.
    """

    def __init__(
        self,
        store,
        router: DexRouter,
        registry: TokenRegistry,
        settlement: SettlementClient,
        channel: StatusChannel,
        subscribe_grace: float = 0.5,
    ):
        self.store = store
        self.router = router
        self.registry = registry
        self.settlement = settlement
        self.channel = channel
        self.subscribe_grace = subscribe_grace

    async def process(
        self,
        job: OrderJob,
        attempt: int = 1,
        is_final_attempt: bool = True,
        lease: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> Order:
        """
        Execute (or resume) the order behind ``job``.

        Returns the order in its final state for this attempt: ``confirmed``,
        or ``failed`` when the error was permanent or attempts ran out.

        ``lease`` is checked right before the transaction is submitted; when it
        reports the job is no longer ours the attempt stops without touching
        the order.

        Raises:
            OrderNotFoundError: The order row does not exist
            JobLockLostError: ``lease`` reported the job lock was lost
            Exception: A retryable error on a non-final attempt, for the queue
                to retry with backoff
        """
        log = logger.with_context(order_id=job.order_id, attempt=attempt)

        order = await self.store.get_order(job.order_id)
        if order is None:
            raise OrderNotFoundError(job.order_id)
        if order.is_terminal:
            log.info(f"Order already {order.status.value}, skipping")
            return order

        if attempt == 1 and order.status == OrderStatus.PENDING and self.subscribe_grace > 0:
            # Let clients subscribe before the first update goes out
            await asyncio.sleep(self.subscribe_grace)

        try:
            return await self._execute(order, job, log, lease)
        except JobLockLostError:
            log.warning("Job lock lost, stopping attempt")
            raise
        except Exception as e:
            if is_retryable(e) and not is_final_attempt:
                log.warning(f"Attempt failed, will retry: {e}", error_type=type(e).__name__)
                raise

            if is_retryable(e):
                message = str(QueueExhaustedError(job.order_id, attempt, str(e)))
            else:
                message = str(e)
            log.error(f"Order failed: {message}", error_type=type(e).__name__)
            return await self.fail(job.order_id, message)

    async def fail(self, order_id: str, message: str) -> Order:
        """Persist ``failed`` with ``message`` and broadcast it."""
        try:
            order = await self.store.apply_transition(order_id, OrderStatus.FAILED, error=message)
        except InvalidTransitionError as e:
            # Already terminal; nothing to broadcast
            logger.warning(f"Could not fail order {order_id}: {e}")
            order = await self.store.get_order(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            return order

        logger.transition(OrderStatus.FAILED.value, order_id=order_id, error=message)
        await self.channel.publish(order_id, StatusUpdate(
            order_id=order_id,
            status=OrderStatus.FAILED,
            token_in=order.token_in,
            token_out=order.token_out,
            amount_in=order.amount_in,
            error=message,
        ))
        return order

    async def _execute(
        self,
        order: Order,
        job: OrderJob,
        log: EngineLogger,
        lease: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> Order:
        token_in_address: Optional[str] = None
        token_out_address: Optional[str] = None
        decision: Optional[RoutingDecision] = None

        if order.status in (OrderStatus.PENDING, OrderStatus.ROUTING):
            order = await self._transition(
                order, OrderStatus.ROUTING, log,
                token_in=order.token_in,
                token_out=order.token_out,
                amount_in=order.amount_in,
            )

            self.registry.validate_pair(order.token_in, order.token_out)
            token_in_address = self.registry.resolve_address(order.token_in)
            token_out_address = self.registry.resolve_address(order.token_out)

            decision = await self.router.route(token_in_address, token_out_address, order.amount_in)
            log.info(f"Routed to {decision.selected_venue}", routing=decision.to_dict())

            order = await self._transition(
                order, OrderStatus.BUILDING, log,
                selected_dex=decision.selected_venue,
                amount_out=decision.output_amount,
                dex_quotes=decision.dex_quotes(),
            )

        if order.status == OrderStatus.BUILDING:
            if decision is None:
                token_in_address = self.registry.resolve_address(order.token_in)
                token_out_address = self.registry.resolve_address(order.token_out)
                decision = RoutingDecision.resumed(
                    order.selected_dex,
                    order.amount_out,
                    token_in_address,
                    token_out_address,
                    order.amount_in,
                )
                log.info(f"Resuming build on {order.selected_dex}")

            unsigned_tx = await self.router.prepare(decision, job.wallet_address, job.slippage)
            await self._check_lease(order.id, lease)
            tx_hash = await self.settlement.submit(unsigned_tx, order.id)

            order = await self._transition(
                order, OrderStatus.SUBMITTED, log,
                selected_dex=order.selected_dex,
                tx_hash=tx_hash,
            )

        if order.status == OrderStatus.SUBMITTED:
            receipt = await self.settlement.confirm(order.tx_hash)
            log.info("Settlement confirmed", receipt=receipt.to_dict())
            amount_out = receipt.amount_out if receipt.amount_out is not None else order.amount_out
            execution_price = (amount_out / order.amount_in) if amount_out is not None else None

            order = await self._transition(
                order, OrderStatus.CONFIRMED, log,
                selected_dex=order.selected_dex,
                tx_hash=order.tx_hash,
                execution_price=execution_price,
                broadcast_amount_out=amount_out,
            )

        return order

    async def _transition(
        self,
        order: Order,
        status: OrderStatus,
        log: EngineLogger,
        selected_dex: Optional[str] = None,
        amount_out: Optional[Decimal] = None,
        tx_hash: Optional[str] = None,
        broadcast_amount_out: Optional[Decimal] = None,
        **extra,
    ) -> Order:
        """Persist a transition, then publish it."""
        order = await self.store.apply_transition(
            order.id,
            status,
            amount_out=amount_out,
            selected_dex=selected_dex,
            tx_hash=tx_hash,
        )
        log.transition(status.value, selected_dex=order.selected_dex, tx_hash=order.tx_hash)

        await self.channel.publish(order.id, StatusUpdate(
            order_id=order.id,
            status=status,
            selected_dex=selected_dex,
            amount_out=broadcast_amount_out if broadcast_amount_out is not None else amount_out,
            tx_hash=tx_hash,
            **extra,
        ))
        return order

    @staticmethod
    async def _check_lease(order_id: str, lease: Optional[Callable[[], Awaitable[bool]]]) -> None:
        """Raise JobLockLostError unless the job lock is confirmed held."""
        if lease is None:
            return
        try:
            held = await lease()
        except Exception as e:
            raise JobLockLostError(order_id) from e
        if not held:
            raise JobLockLostError(order_id)
