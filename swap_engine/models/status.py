"""
Order status values and the status update wire envelope.
"""
import json
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class OrderStatus(str, Enum):
    """Order lifecycle status."""
    PENDING = "pending"        # Persisted, job queued
    ROUTING = "routing"        # Comparing venue quotes
    BUILDING = "building"      # Building the swap on the chosen venue
    SUBMITTED = "submitted"    # Sent to the settlement layer
    CONFIRMED = "confirmed"    # Settled
    FAILED = "failed"          # Gave up

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


STATUS_RANK: Dict[OrderStatus, int] = {
    OrderStatus.PENDING: 0,
    OrderStatus.ROUTING: 1,
    OrderStatus.BUILDING: 2,
    OrderStatus.SUBMITTED: 3,
    OrderStatus.CONFIRMED: 4,
    OrderStatus.FAILED: 4,
}

TERMINAL_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.FAILED})


def is_regression(current: OrderStatus, new: OrderStatus) -> bool:
    """True if moving from ``current`` to ``new`` would go backwards."""
    if current.is_terminal:
        return new != current
    return new.rank < current.rank


class StatusUpdate(BaseModel):
    """
    A (partial) view of an order at one transition.

    Only ``order_id`` and ``status`` are required; the other fields are set
    when known. Serialized with camelCase keys.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    order_id: str
    status: OrderStatus
    token_in: Optional[str] = None
    token_out: Optional[str] = None
    amount_in: Optional[Decimal] = None
    dex_quotes: Optional[Dict[str, Optional[Decimal]]] = None
    selected_dex: Optional[str] = None
    tx_hash: Optional[str] = None
    execution_price: Optional[Decimal] = None
    amount_out: Optional[Decimal] = None
    error: Optional[str] = None

    def merge(self, later: "StatusUpdate") -> "StatusUpdate":
        """
        Fold a later update into this one.

        Known fields are never cleared and the status never moves backwards.
        """
        if later.order_id != self.order_id:
            raise ValueError(f"Cannot merge update for {later.order_id} into {self.order_id}")

        merged = self.model_dump()
        for name, value in later.model_dump().items():
            if value is None or name in ("order_id", "status"):
                continue
            if name == "dex_quotes" and merged.get("dex_quotes"):
                merged["dex_quotes"] = {**merged["dex_quotes"], **value}
            else:
                merged[name] = value

        if not is_regression(self.status, later.status):
            merged["status"] = later.status
        return StatusUpdate(**merged)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys and unset fields dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode_envelope(update: StatusUpdate) -> str:
    """Channel message: ``{"orderId": ..., "update": {...}}``."""
    return json.dumps({"orderId": update.order_id, "update": update.to_wire()})


def decode_envelope(raw: Union[str, bytes]) -> StatusUpdate:
    """
    Parse a channel message.

    Raises:
        ValueError: Malformed JSON or envelope (pydantic's ValidationError is
            a ValueError subclass)
    """
    payload = json.loads(raw)
    if not isinstance(payload, dict) or "update" not in payload or "orderId" not in payload:
        raise ValueError("Envelope must contain orderId and update")
    update = dict(payload["update"])
    update.setdefault("orderId", payload["orderId"])
    if update["orderId"] != payload["orderId"]:
        raise ValueError("Envelope orderId does not match update")
    return StatusUpdate.model_validate(update)
