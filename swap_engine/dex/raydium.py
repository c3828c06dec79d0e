"""
Raydium venue adapter.

Quotes come from the Raydium v3 pool API (standard AMM pools, deepest pool by
TVL). Transactions are built by the Raydium trade API, which returns a
serialized unsigned V0 transaction for the given wallet.
"""
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, List

from swap_engine.dex.base import HttpVenueAdapter
from swap_engine.dex.types import Quote, SwapParams
from swap_engine.exceptions import PoolNotFoundError, VenueAPIError
from swap_engine.tokens import NATIVE_MINT, TokenRegistry

logger = logging.getLogger(__name__)


class RaydiumAdapter(HttpVenueAdapter):
    """Raydium standard AMM pools."""

    venue_id = "raydium"

    DEFAULT_FEE_RATE = Decimal("0.0025")
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"

    def __init__(
        self,
        registry: TokenRegistry,
        api_url: str = "https://api-v3.raydium.io",
        trade_api_url: str = "https://transaction-v1.raydium.io",
        priority_fee_micro_lamports: int = 100000,
        timeout: float = 10.0,
    ):
        super().__init__(registry, timeout=timeout)
        self.api_url = api_url.rstrip("/")
        self.trade_api_url = trade_api_url.rstrip("/")
        self.priority_fee_micro_lamports = priority_fee_micro_lamports

    async def quote(
        self,
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
    ) -> Quote:
        pool = await self._find_pool(token_in_address, token_out_address)

        # Pool price is quote/base (e.g. USDC per SOL); mintA is the base
        price = Decimal(str(pool.get("price") or 0))
        if price <= 0:
            raise VenueAPIError(self.venue_id, 200, f"Malformed pool state for {pool.get('id')}")

        is_token_in_base = (pool.get("mintA") or {}).get("address") == token_in_address
        if is_token_in_base:
            output = amount_in * price
        else:
            output = amount_in / price

        fee_rate = Decimal(str(pool.get("feeRate", self.DEFAULT_FEE_RATE)))
        output = output * (1 - fee_rate)

        out_decimals = self.registry.decimals(token_out_address)
        output = output.quantize(Decimal(1).scaleb(-out_decimals), rounding=ROUND_DOWN)

        logger.debug(
            f"Raydium quote: pool={pool.get('id')} price={price} "
            f"base_in={is_token_in_base} amount_in={amount_in} output={output}"
        )

        return Quote(
            venue_id=self.venue_id,
            output_amount=output,
            price_impact=0.0,
            fee=float(fee_rate),
            pool_id=pool.get("id"),
        )

    async def build_transaction(self, params: SwapParams) -> str:
        slippage_bps = int(round(params.slippage * 10000))
        compute = await self._request(
            "GET",
            f"{self.trade_api_url}/compute/swap-base-in",
            params={
                "inputMint": params.token_in_address,
                "outputMint": params.token_out_address,
                "amount": str(params.amount_in_raw),
                "slippageBps": slippage_bps,
                "txVersion": "V0",
            },
        )

        if not compute.get("success"):
            message = compute.get("msg") or "compute failed"
            if message == self.ROUTE_NOT_FOUND:
                raise PoolNotFoundError(self.venue_id, params.token_in_address, params.token_out_address)
            raise VenueAPIError(self.venue_id, 200, message)

        threshold = int((compute.get("data") or {}).get("otherAmountThreshold", 0))
        if threshold < params.min_amount_out_raw:
            raise VenueAPIError(
                self.venue_id,
                200,
                f"Minimum output {threshold} below slippage bound {params.min_amount_out_raw}",
            )

        response = await self._request(
            "POST",
            f"{self.trade_api_url}/transaction/swap-base-in",
            data={
                "computeUnitPriceMicroLamports": str(self.priority_fee_micro_lamports),
                "swapResponse": compute,
                "txVersion": "V0",
                "wallet": params.wallet_address,
                "wrapSol": params.token_in_address == NATIVE_MINT,
                "unwrapSol": params.token_out_address == NATIVE_MINT,
            },
        )

        transactions = response.get("data") or []
        if not response.get("success") or not transactions:
            raise VenueAPIError(self.venue_id, 200, response.get("msg") or "No transaction returned")

        if len(transactions) > 1:
            logger.warning(f"Raydium returned {len(transactions)} transactions, using the swap transaction")
        return transactions[-1]["transaction"]

    async def _find_pool(self, token_in_address: str, token_out_address: str) -> Dict[str, Any]:
        """Deepest standard AMM pool for the pair."""
        payload = await self._request(
            "GET",
            f"{self.api_url}/pools/info/mint",
            params={
                "mint1": token_in_address,
                "mint2": token_out_address,
                "poolType": "standard",
                "poolSortField": "liquidity",
                "sortType": "desc",
                "pageSize": 100,
                "page": 1,
            },
        )

        if not payload.get("success", True):
            raise VenueAPIError(self.venue_id, 200, payload.get("msg") or "pool lookup failed")

        pools: List[Dict[str, Any]] = (payload.get("data") or {}).get("data") or []
        standard_pools = [p for p in pools if p.get("type") == "Standard"]
        if not standard_pools:
            raise PoolNotFoundError(self.venue_id, token_in_address, token_out_address)

        return max(standard_pools, key=lambda p: float(p.get("tvl") or 0))
