"""
Swap transaction builder.

Converts a routing decision into raw base-unit amounts and asks the selected
venue for an unsigned transaction.
"""
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Sequence

from swap_engine.dex.base import VenueAdapter
from swap_engine.dex.types import SwapParams
from swap_engine.exceptions import PoolNotFoundError, VenueBuildError
from swap_engine.tokens import TokenRegistry

logger = logging.getLogger(__name__)


def to_raw(amount: Decimal, decimals: int) -> int:
    """Scale a token amount to integer base units, rounding down."""
    return int((amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


class SwapBuilder:
    """Builds unsigned swap transactions on a chosen venue."""

    def __init__(self, adapters: Sequence[VenueAdapter], registry: TokenRegistry):
        self.adapters: Dict[str, VenueAdapter] = {a.venue_id: a for a in adapters}
        self.registry = registry

    def min_amount_out(self, quoted_output: Decimal, slippage: float) -> Decimal:
        return quoted_output * (1 - Decimal(str(slippage)))

    async def build(
        self,
        wallet_address: str,
        venue_id: str,
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
        slippage: float,
        quoted_output: Decimal,
    ) -> str:
        """
        Build the swap on ``venue_id``.

        Returns:
            Base64-encoded unsigned transaction

        Raises:
            PoolNotFoundError: The venue has no pool for the pair
            VenueBuildError: Unknown venue or any other adapter failure
        """
        adapter = self.adapters.get(venue_id)
        if adapter is None:
            raise VenueBuildError(venue_id, "unknown venue")

        params = SwapParams(
            wallet_address=wallet_address,
            token_in_address=token_in_address,
            token_out_address=token_out_address,
            amount_in_raw=to_raw(amount_in, self.registry.decimals(token_in_address)),
            min_amount_out_raw=to_raw(
                self.min_amount_out(quoted_output, slippage),
                self.registry.decimals(token_out_address),
            ),
            slippage=slippage,
        )

        logger.info(
            f"Building {venue_id} swap: in={params.amount_in_raw} "
            f"min_out={params.min_amount_out_raw} slippage={slippage}"
        )

        try:
            return await adapter.build_transaction(params)
        except PoolNotFoundError:
            raise
        except Exception as e:
            logger.error(f"{venue_id} build failed: {e}")
            raise VenueBuildError(venue_id, str(e) or type(e).__name__, cause=e) from e
