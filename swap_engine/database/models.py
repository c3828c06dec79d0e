from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import String, BigInteger, DateTime, Numeric, Text, Index, Enum as SQLEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func
from swap_engine.models import OrderStatus

class Base(DeclarativeBase):
    pass

class OrderModel(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    token_in: Mapped[str] = mapped_column(String(16), nullable=False)
    token_out: Mapped[str] = mapped_column(String(16), nullable=False)
    amount_in: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False)
    amount_out: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 9), nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    selected_dex: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_orders_user_created', 'user_id', 'created_at'),
        Index('idx_orders_status_updated', 'status', 'updated_at'),
    )
