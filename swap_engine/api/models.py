"""
Request and response models for the order API.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from swap_engine.execution.orders import Order


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============ Orders ============

class ExecuteOrderRequest(CamelModel):
    """Market swap order submission."""
    user_id: int
    wallet_address: str = Field(..., min_length=1)
    token_in: str
    token_out: str
    amount: Decimal
    slippage: Optional[float] = None


class ExecuteOrderResponse(CamelModel):
    order_id: str
    status: str
    job_id: str
    created: bool = True


class OrderResponse(CamelModel):
    """Stored order state."""
    id: str
    user_id: int
    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Optional[Decimal] = None
    status: str
    selected_dex: Optional[str] = None
    tx_hash: Optional[str] = None
    execution_price: Optional[Decimal] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            user_id=order.user_id,
            token_in=order.token_in,
            token_out=order.token_out,
            amount_in=order.amount_in,
            amount_out=order.amount_out,
            status=order.status.value,
            selected_dex=order.selected_dex,
            tx_hash=order.tx_hash,
            execution_price=order.execution_price,
            error=order.error,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class DeleteOrdersRequest(CamelModel):
    user_id: int
    order_ids: List[str]


class DeleteOrdersResponse(CamelModel):
    success: bool = True
    deleted_count: int


# ============ System ============

class HealthResponse(CamelModel):
    status: str
    redis: bool
    database: bool
    queue: Dict[str, int] = {}
    subscribers: int = 0
    timestamp: datetime
