"""
Wire models shared by the queue, the status channel and the API.
"""

from swap_engine.models.job import OrderJob
from swap_engine.models.status import (
    OrderStatus,
    StatusUpdate,
    TERMINAL_STATUSES,
    is_regression,
    encode_envelope,
    decode_envelope,
)

__all__ = [
    # Job
    "OrderJob",

    # Status
    "OrderStatus",
    "StatusUpdate",
    "TERMINAL_STATUSES",
    "is_regression",
    "encode_envelope",
    "decode_envelope",
]
