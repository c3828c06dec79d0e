"""
Quote aggregation across venues.

Every configured venue is asked for a quote concurrently. All outcomes are
collected before a decision is made; a single failing venue never prevents the
others from being compared.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from swap_engine.dex.base import VenueAdapter
from swap_engine.dex.types import Quote, RoutingDecision
from swap_engine.exceptions import NoLiquidityAvailableError, VenueQuoteError

logger = logging.getLogger(__name__)


class QuoteAggregator:
    """
    Compares quotes from a set of venue adapters.

    Selection rule: strictly greatest output amount. Equal outputs are broken
    by ``venue_priority`` (earlier wins); venues missing from the priority list
    rank after the listed ones, in adapter order.
    """

    def __init__(
        self,
        adapters: Sequence[VenueAdapter],
        venue_priority: Optional[Sequence[str]] = None,
        quote_timeout: float = 10.0,
    ):
        self.adapters = list(adapters)
        self.venue_priority = list(venue_priority or [])
        self.quote_timeout = quote_timeout

    def _rank(self, venue_id: str) -> Tuple[int, int]:
        if venue_id in self.venue_priority:
            return (0, self.venue_priority.index(venue_id))
        order = [a.venue_id for a in self.adapters]
        return (1, order.index(venue_id) if venue_id in order else len(order))

    async def _quote_one(
        self,
        adapter: VenueAdapter,
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
    ) -> Quote:
        try:
            return await asyncio.wait_for(
                adapter.quote(token_in_address, token_out_address, amount_in),
                timeout=self.quote_timeout,
            )
        except asyncio.TimeoutError as e:
            raise VenueQuoteError(adapter.venue_id, f"timed out after {self.quote_timeout}s") from e

    async def collect(
        self,
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
    ) -> Tuple[List[Quote], Dict[str, str]]:
        """
        Quote every venue concurrently.

        Returns:
            (successful quotes, {venue: error message} for failed venues)
        """
        results = await asyncio.gather(
            *[
                self._quote_one(adapter, token_in_address, token_out_address, amount_in)
                for adapter in self.adapters
            ],
            return_exceptions=True,
        )

        quotes: List[Quote] = []
        errors: Dict[str, str] = {}
        for adapter, result in zip(self.adapters, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                errors[adapter.venue_id] = str(result) or type(result).__name__
                logger.warning(f"{adapter.venue_id} quote failed: {errors[adapter.venue_id]}")
                continue
            quotes.append(result)
            logger.debug(f"{adapter.venue_id} quote: {result.output_amount}")

        return quotes, errors

    def select(self, quotes: Sequence[Quote]) -> Quote:
        """Best quote by output amount, then by venue priority."""
        return min(quotes, key=lambda q: (-q.output_amount, self._rank(q.venue_id)))

    async def best_quote(
        self,
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
    ) -> RoutingDecision:
        """
        Compare all venues and pick the best execution.

        Raises:
            NoLiquidityAvailableError: No venue produced a quote
        """
        quotes, errors = await self.collect(token_in_address, token_out_address, amount_in)

        if not quotes:
            logger.error(f"No venue could quote {amount_in} {token_in_address} -> {token_out_address}")
            raise NoLiquidityAvailableError(errors)

        best = self.select(quotes)
        decision = RoutingDecision(
            selected_venue=best.venue_id,
            output_amount=best.output_amount,
            token_in_address=token_in_address,
            token_out_address=token_out_address,
            amount_in=amount_in,
            quotes=quotes,
            errors=errors,
        )

        summary = ", ".join(f"{q.venue_id}={q.output_amount}" for q in quotes)
        logger.info(
            f"Routing decision: {best.venue_id} ({best.output_amount}) "
            f"from [{summary}]" + (f", failed: {sorted(errors)}" if errors else "")
        )
        return decision
