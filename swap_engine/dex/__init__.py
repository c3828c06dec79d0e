"""
Multi-venue DEX routing.

Venue adapters quote and build swaps; the aggregator compares quotes and the
router exposes the two-step route/prepare flow used by the order processor.
"""

from swap_engine.dex.types import Quote, RoutingDecision, SwapParams
from swap_engine.dex.base import VenueAdapter, HttpVenueAdapter
from swap_engine.dex.raydium import RaydiumAdapter
from swap_engine.dex.meteora import MeteoraAdapter
from swap_engine.dex.aggregator import QuoteAggregator
from swap_engine.dex.builder import SwapBuilder, to_raw
from swap_engine.dex.router import DexRouter

__all__ = [
    "Quote",
    "RoutingDecision",
    "SwapParams",
    "VenueAdapter",
    "HttpVenueAdapter",
    "RaydiumAdapter",
    "MeteoraAdapter",
    "QuoteAggregator",
    "SwapBuilder",
    "to_raw",
    "DexRouter",
]
