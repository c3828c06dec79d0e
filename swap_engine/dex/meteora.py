"""
Meteora venue adapter.

Meteora dynamic AMM pools are constant-product pools. Pool state (reserves and
fee) is read from the Meteora pool API and the quote is computed locally. The
build step produces a serialized swap instruction for the pool which the
settlement layer signs and forwards.
"""
import base64
import json
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, Mapping, Optional, Tuple

from swap_engine.dex.base import HttpVenueAdapter
from swap_engine.dex.types import Quote, SwapParams
from swap_engine.exceptions import PoolNotFoundError, VenueAPIError
from swap_engine.tokens import TokenRegistry

logger = logging.getLogger(__name__)

DYNAMIC_AMM_PROGRAM_ID = "Eo7WjKq67rjJQSZxS6z3YkapzY3eMj6Xy8X5EQVn5UaB"

# Keyed by (mint, mint); lookups try both orientations
DEFAULT_POOLS: Dict[Tuple[str, str], str] = {
    (
        "So11111111111111111111111111111111111111112",
        "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    ): "5CX2qVqPbBZuiDQHJKjqp4KBdkHzJYNHNjjNrKKzQaVs",
    (
        "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
    ): "EjfvJeP3f4XErYMAxs8BAeB8trE1KLy6YbxZQN4i6aRB",
}


class MeteoraAdapter(HttpVenueAdapter):
    """Meteora dynamic AMM pools."""

    venue_id = "meteora"

    DEFAULT_FEE_PCT = Decimal("0.25")

    def __init__(
        self,
        registry: TokenRegistry,
        api_url: str = "https://amm-v2.meteora.ag",
        pools: Optional[Mapping[Tuple[str, str], str]] = None,
        timeout: float = 10.0,
    ):
        super().__init__(registry, timeout=timeout)
        self.api_url = api_url.rstrip("/")
        self.pools = dict(pools if pools is not None else DEFAULT_POOLS)

    def pool_address(self, token_in_address: str, token_out_address: str) -> Optional[str]:
        return (
            self.pools.get((token_in_address, token_out_address))
            or self.pools.get((token_out_address, token_in_address))
        )

    async def quote(
        self,
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
    ) -> Quote:
        pool_address = self._require_pool(token_in_address, token_out_address)
        state = await self._fetch_pool(pool_address)
        output, price_impact, fee = self._swap_output(state, token_in_address, token_out_address, amount_in)

        out_decimals = self.registry.decimals(token_out_address)
        output = output.quantize(Decimal(1).scaleb(-out_decimals), rounding=ROUND_DOWN)

        return Quote(
            venue_id=self.venue_id,
            output_amount=output,
            price_impact=float(price_impact),
            fee=float(fee),
            pool_id=pool_address,
        )

    async def build_transaction(self, params: SwapParams) -> str:
        pool_address = self._require_pool(params.token_in_address, params.token_out_address)
        state = await self._fetch_pool(pool_address)

        in_decimals = self.registry.decimals(params.token_in_address)
        out_decimals = self.registry.decimals(params.token_out_address)
        amount_in = Decimal(params.amount_in_raw).scaleb(-in_decimals)

        expected, _, _ = self._swap_output(
            state, params.token_in_address, params.token_out_address, amount_in
        )
        expected_raw = int(expected.scaleb(out_decimals).to_integral_value(rounding=ROUND_DOWN))
        if expected_raw < params.min_amount_out_raw:
            raise VenueAPIError(
                self.venue_id,
                200,
                f"Expected output {expected_raw} below slippage bound {params.min_amount_out_raw}",
            )

        instruction = {
            "venue": self.venue_id,
            "programId": DYNAMIC_AMM_PROGRAM_ID,
            "pool": pool_address,
            "owner": params.wallet_address,
            "inputMint": params.token_in_address,
            "outputMint": params.token_out_address,
            "inAmount": str(params.amount_in_raw),
            "minimumOutAmount": str(params.min_amount_out_raw),
        }
        return base64.b64encode(json.dumps(instruction, sort_keys=True).encode()).decode()

    def _require_pool(self, token_in_address: str, token_out_address: str) -> str:
        pool_address = self.pool_address(token_in_address, token_out_address)
        if not pool_address:
            raise PoolNotFoundError(self.venue_id, token_in_address, token_out_address)
        return pool_address

    async def _fetch_pool(self, pool_address: str) -> Dict[str, Any]:
        payload = await self._request("GET", f"{self.api_url}/pools", params={"address": pool_address})
        pools = payload if isinstance(payload, list) else (payload or {}).get("data") or []
        if not pools:
            raise VenueAPIError(self.venue_id, 200, f"Pool {pool_address} state unavailable")
        return pools[0]

    def _swap_output(
        self,
        state: Dict[str, Any],
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
    ) -> Tuple[Decimal, Decimal, Decimal]:
        """
        Constant-product output for ``amount_in``.

        Returns:
            (output amount, price impact fraction, fee paid in token-in units)
        """
        try:
            mints = list(state["pool_token_mints"])
            reserves = [Decimal(str(a)) for a in state["pool_token_amounts"]]
            fee_pct = Decimal(str(state.get("total_fee_pct", self.DEFAULT_FEE_PCT)))
            reserve_in = reserves[mints.index(token_in_address)]
            reserve_out = reserves[mints.index(token_out_address)]
        except (KeyError, ValueError, IndexError, ArithmeticError) as e:
            raise VenueAPIError(self.venue_id, 200, f"Malformed pool state: {e}") from e

        if reserve_in <= 0 or reserve_out <= 0:
            raise VenueAPIError(self.venue_id, 200, "Pool has no liquidity")

        fee = amount_in * fee_pct / 100
        amount_in_net = amount_in - fee
        output = reserve_out * amount_in_net / (reserve_in + amount_in_net)

        spot_output = amount_in_net * reserve_out / reserve_in
        price_impact = 1 - output / spot_output if spot_output > 0 else Decimal(0)

        return output, price_impact, fee
