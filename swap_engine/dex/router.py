"""
DEX router.

Routing and transaction preparation are separate calls so the caller can
publish the routing decision before the (slower) build step starts.
"""
import logging
from decimal import Decimal
from typing import Optional, Sequence

from swap_engine.dex.aggregator import QuoteAggregator
from swap_engine.dex.base import VenueAdapter
from swap_engine.dex.builder import SwapBuilder
from swap_engine.dex.types import RoutingDecision
from swap_engine.exceptions import InvalidTokenPairError
from swap_engine.logging import log_timing
from swap_engine.tokens import TokenRegistry

logger = logging.getLogger(__name__)


class DexRouter:
    """
    Best-execution router across venue adapters.

    No retries happen here; retry policy belongs to the job queue.
    """

    def __init__(
        self,
        adapters: Sequence[VenueAdapter],
        registry: TokenRegistry,
        venue_priority: Optional[Sequence[str]] = None,
        quote_timeout: float = 10.0,
    ):
        self.adapters = list(adapters)
        self.registry = registry
        self.aggregator = QuoteAggregator(self.adapters, venue_priority, quote_timeout)
        self.builder = SwapBuilder(self.adapters, registry)

    @property
    def venues(self):
        return [a.venue_id for a in self.adapters]

    @log_timing(label="router.route")
    async def route(
        self,
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
    ) -> RoutingDecision:
        """
        Pick the venue with the best output for the swap.

        Raises:
            InvalidTokenPairError: Input and output mints are the same
            NoLiquidityAvailableError: No venue could quote
        """
        if token_in_address == token_out_address:
            raise InvalidTokenPairError(token_in_address, token_out_address)
        return await self.aggregator.best_quote(token_in_address, token_out_address, amount_in)

    @log_timing(label="router.prepare")
    async def prepare(
        self,
        decision: RoutingDecision,
        wallet_address: str,
        slippage: float,
    ) -> str:
        """Build the unsigned transaction for a routing decision."""
        return await self.builder.build(
            wallet_address=wallet_address,
            venue_id=decision.selected_venue,
            token_in_address=decision.token_in_address,
            token_out_address=decision.token_out_address,
            amount_in=decision.amount_in,
            slippage=slippage,
            quoted_output=decision.output_amount,
        )

    async def close(self) -> None:
        for adapter in self.adapters:
            await adapter.close()
