"""
Order lifecycle: model, state machine rules and the execution pipeline.
"""

from swap_engine.execution.orders.models import Order, NEXT_STATUS, WRITE_ONCE_FIELDS, utcnow
from swap_engine.execution.orders.processor import OrderProcessor, is_retryable

__all__ = [
    "Order",
    "NEXT_STATUS",
    "WRITE_ONCE_FIELDS",
    "utcnow",
    "OrderProcessor",
    "is_retryable",
]
