"""
Order execution: processing pipeline and settlement clients.
"""

from swap_engine.execution.orders import Order, OrderProcessor
from swap_engine.execution.settlement import (
    SettlementClient,
    SettlementReceipt,
    SimulatedSettlement,
    SolanaRpcSettlement,
    create_settlement,
)

__all__ = [
    "Order",
    "OrderProcessor",
    "SettlementClient",
    "SettlementReceipt",
    "SimulatedSettlement",
    "SolanaRpcSettlement",
    "create_settlement",
]
