"""
DEX routing types.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List, Dict, Any


@dataclass(frozen=True)
class Quote:
    """Price quote from a single venue, in output-token units."""
    venue_id: str
    output_amount: Decimal
    price_impact: float = 0.0
    fee: float = 0.0
    pool_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "output_amount": str(self.output_amount),
            "price_impact": self.price_impact,
            "fee": self.fee,
            "pool_id": self.pool_id,
        }


@dataclass
class RoutingDecision:
    """
    Outcome of comparing quotes across venues.

    ``quotes`` holds every successful quote; ``errors`` holds the failure
    message of every venue that did not quote.
    """
    selected_venue: str
    output_amount: Decimal
    token_in_address: str
    token_out_address: str
    amount_in: Decimal
    quotes: List[Quote] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def dex_quotes(self) -> Dict[str, Optional[Decimal]]:
        """Venue -> output amount, with ``None`` for venues that failed."""
        table: Dict[str, Optional[Decimal]] = {q.venue_id: q.output_amount for q in self.quotes}
        for venue in self.errors:
            table.setdefault(venue, None)
        return table

    @classmethod
    def resumed(
        cls,
        venue: str,
        output_amount: Decimal,
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
    ) -> "RoutingDecision":
        """Rebuild a decision from an already-routed order."""
        return cls(
            selected_venue=venue,
            output_amount=output_amount,
            token_in_address=token_in_address,
            token_out_address=token_out_address,
            amount_in=amount_in,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_venue": self.selected_venue,
            "output_amount": str(self.output_amount),
            "token_in_address": self.token_in_address,
            "token_out_address": self.token_out_address,
            "amount_in": str(self.amount_in),
            "quotes": [q.to_dict() for q in self.quotes],
            "errors": dict(self.errors),
        }


@dataclass(frozen=True)
class SwapParams:
    """
    Everything a venue needs to build a swap.

    Amounts are raw integer base units, already scaled by each token's decimals.
    """
    wallet_address: str
    token_in_address: str
    token_out_address: str
    amount_in_raw: int
    min_amount_out_raw: int
    slippage: float
