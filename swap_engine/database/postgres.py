import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, delete, text
from sqlalchemy.exc import SQLAlchemyError

from swap_engine.database.models import Base, OrderModel
from swap_engine.exceptions import OrderNotFoundError
from swap_engine.execution.orders.models import Order, utcnow
from swap_engine.models import OrderStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)


def _to_order(model: OrderModel) -> Order:
    return Order(
        id=model.id,
        user_id=model.user_id,
        token_in=model.token_in,
        token_out=model.token_out,
        amount_in=Decimal(model.amount_in),
        status=OrderStatus(model.status),
        amount_out=Decimal(model.amount_out) if model.amount_out is not None else None,
        selected_dex=model.selected_dex,
        tx_hash=model.tx_hash,
        error=model.error,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class OrderStore:
    """
    PostgreSQL order state store.

    The single authoritative record of every order. Transitions run inside a
    row lock so the state machine check and the write are atomic.
    """

    def __init__(self, config=None):
        self._engine = None
        self._session_factory = None
        self.config = config

    async def connect(self):
        """Initialize the database connection pool."""
        if self._engine:
            return

        try:
            self._engine = create_async_engine(
                self.config.postgres_url,
                echo=False,
                pool_size=self.config.postgres_pool_size,
            )
            self._session_factory = async_sessionmaker(
                self._engine, expire_on_commit=False, class_=AsyncSession
            )
            logger.info("Connected to PostgreSQL")
        except Exception as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise

    async def disconnect(self):
        """Close the database connection pool."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Disconnected from PostgreSQL")

    async def create_tables(self):
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def health_check(self) -> bool:
        """Check database connectivity."""
        if not self._engine:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    # --- Orders ---

    async def create_order(self, order: Order) -> Order:
        """Insert a new pending order."""
        async with self._session_factory() as session:
            try:
                session.add(OrderModel(
                    id=order.id,
                    user_id=order.user_id,
                    token_in=order.token_in,
                    token_out=order.token_out,
                    amount_in=order.amount_in,
                    status=order.status,
                    created_at=order.created_at,
                    updated_at=order.updated_at,
                ))
                await session.commit()
                logger.info(f"Created order {order.id}")
                return order
            except SQLAlchemyError as e:
                logger.error(f"Error creating order {order.id}: {e}")
                await session.rollback()
                raise

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._session_factory() as session:
            result = await session.execute(select(OrderModel).where(OrderModel.id == order_id))
            model = result.scalars().first()
            return _to_order(model) if model else None

    async def get_user_orders(self, user_id: int, limit: int = 50) -> List[Order]:
        """Latest orders for a user, newest first."""
        async with self._session_factory() as session:
            stmt = (
                select(OrderModel)
                .where(OrderModel.user_id == user_id)
                .order_by(OrderModel.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_to_order(m) for m in result.scalars().all()]

    async def get_recent_orders(self, limit: int = 50) -> List[Order]:
        async with self._session_factory() as session:
            stmt = select(OrderModel).order_by(OrderModel.created_at.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_to_order(m) for m in result.scalars().all()]

    async def delete_orders(self, user_id: int, order_ids: List[str]) -> int:
        """Delete a user's finished orders. Orders still in flight are kept."""
        if not order_ids:
            return 0
        async with self._session_factory() as session:
            try:
                stmt = (
                    delete(OrderModel)
                    .where(OrderModel.id.in_(order_ids))
                    .where(OrderModel.user_id == user_id)
                    .where(OrderModel.status.in_(list(TERMINAL_STATUSES)))
                )
                result = await session.execute(stmt)
                await session.commit()
                logger.info(f"Deleted {result.rowcount} order(s) for user {user_id}")
                return result.rowcount
            except SQLAlchemyError as e:
                logger.error(f"Error deleting orders for user {user_id}: {e}")
                await session.rollback()
                raise

    async def get_stale_orders(self, older_than: timedelta, limit: int = 100) -> List[Order]:
        """Non-terminal orders not updated for ``older_than``."""
        cutoff: datetime = utcnow() - older_than
        async with self._session_factory() as session:
            stmt = (
                select(OrderModel)
                .where(OrderModel.status.not_in(list(TERMINAL_STATUSES)))
                .where(OrderModel.updated_at < cutoff)
                .order_by(OrderModel.updated_at)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_to_order(m) for m in result.scalars().all()]

    async def apply_transition(
        self,
        order_id: str,
        status: OrderStatus,
        amount_out: Optional[Decimal] = None,
        selected_dex: Optional[str] = None,
        tx_hash: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Order:
        """
        Move an order to ``status`` and set any newly known fields.

        Raises:
            OrderNotFoundError: No such order
            InvalidTransitionError: The state machine forbids the update
        """
        async with self._session_factory() as session:
            try:
                stmt = select(OrderModel).where(OrderModel.id == order_id).with_for_update()
                result = await session.execute(stmt)
                model = result.scalars().first()
                if model is None:
                    raise OrderNotFoundError(order_id)

                order = _to_order(model)
                order.apply_transition(
                    status,
                    amount_out=amount_out,
                    selected_dex=selected_dex,
                    tx_hash=tx_hash,
                    error=error,
                )

                model.status = order.status
                model.amount_out = order.amount_out
                model.selected_dex = order.selected_dex
                model.tx_hash = order.tx_hash
                model.error = order.error
                model.updated_at = order.updated_at
                await session.commit()
                return order
            except SQLAlchemyError as e:
                logger.error(f"Error updating order {order_id}: {e}")
                await session.rollback()
                raise
