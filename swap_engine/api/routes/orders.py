"""
Orders API routes.
"""
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Query

from swap_engine.api.dependencies import (
    get_channel,
    get_config,
    get_queue,
    get_registry,
    get_store,
)
from swap_engine.api.models import (
    DeleteOrdersRequest,
    DeleteOrdersResponse,
    ExecuteOrderRequest,
    ExecuteOrderResponse,
    OrderResponse,
)
from swap_engine.exceptions import InvalidTokenPairError, UnknownTokenError
from swap_engine.execution.orders import Order
from swap_engine.logging import logger
from swap_engine.models import OrderJob

router = APIRouter(prefix="/api/orders", tags=["Orders"])


@router.post("/execute", response_model=ExecuteOrderResponse, status_code=201)
async def execute_order(request: ExecuteOrderRequest) -> ExecuteOrderResponse:
    """
    Submit a market swap.

    The order is stored as ``pending`` and queued; progress is streamed on
    ``/ws/orders`` and can be polled on ``/api/orders/{order_id}``.
    """
    registry = get_registry()
    try:
        registry.validate_pair(request.token_in, request.token_out)
    except (UnknownTokenError, InvalidTokenPairError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    if request.amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than 0")

    slippage = request.slippage if request.slippage is not None else get_config().default_slippage
    if not 0 <= slippage <= 1:
        raise HTTPException(status_code=400, detail="Slippage must be between 0 and 1")

    order = Order.new(
        user_id=request.user_id,
        token_in=request.token_in,
        token_out=request.token_out,
        amount_in=Decimal(request.amount),
    )
    await get_store().create_order(order)

    handle = await get_queue().enqueue(OrderJob(
        order_id=order.id,
        user_id=order.user_id,
        wallet_address=request.wallet_address,
        token_in=order.token_in,
        token_out=order.token_out,
        amount_in=order.amount_in,
        slippage=slippage,
    ))

    await get_channel().publish(order.id, order.to_status_update())
    logger.info(
        f"Order submitted: {order.amount_in} {order.token_in} -> {order.token_out}",
        order_id=order.id,
        user_id=order.user_id,
    )

    return ExecuteOrderResponse(
        order_id=order.id,
        status=order.status.value,
        job_id=handle.job_id,
        created=handle.created,
    )


@router.get("", response_model=List[OrderResponse])
async def get_orders(
    user_id: Optional[int] = Query(None, description="Only this user's orders"),
    limit: int = Query(50, ge=1, le=500, description="Max results"),
) -> List[OrderResponse]:
    """
    Latest orders, newest first.

    - **user_id**: Restrict to one user
    - **limit**: Maximum results
    """
    store = get_store()
    if user_id is not None:
        orders = await store.get_user_orders(user_id, limit)
    else:
        orders = await store.get_recent_orders(limit)
    return [OrderResponse.from_order(o) for o in orders]


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    """Authoritative current state of an order."""
    order = await get_store().get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
    return OrderResponse.from_order(order)


@router.post("/delete", response_model=DeleteOrdersResponse)
async def delete_orders(request: DeleteOrdersRequest) -> DeleteOrdersResponse:
    """Remove finished orders from a user's history."""
    if not request.order_ids:
        raise HTTPException(status_code=400, detail="orderIds array is required")
    deleted = await get_store().delete_orders(request.user_id, request.order_ids)
    return DeleteOrdersResponse(deleted_count=deleted)
