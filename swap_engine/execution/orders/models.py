"""
Order model and lifecycle rules.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any

from swap_engine.exceptions import InvalidTransitionError
from swap_engine.models import OrderStatus, StatusUpdate


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Fields that may be set once and never changed afterwards
WRITE_ONCE_FIELDS = ("amount_out", "selected_dex", "tx_hash")

# Forward successor of each non-terminal status
NEXT_STATUS: Dict[OrderStatus, OrderStatus] = {
    OrderStatus.PENDING: OrderStatus.ROUTING,
    OrderStatus.ROUTING: OrderStatus.BUILDING,
    OrderStatus.BUILDING: OrderStatus.SUBMITTED,
    OrderStatus.SUBMITTED: OrderStatus.CONFIRMED,
}


@dataclass
class Order:
    """
    Swap order.

    Created ``pending`` by the API and then moved forward by the order
    processor. Never deleted by the pipeline.
    """
    id: str
    user_id: int
    token_in: str
    token_out: str
    amount_in: Decimal

    status: OrderStatus = OrderStatus.PENDING

    # Set once routed / submitted
    amount_out: Optional[Decimal] = None
    selected_dex: Optional[str] = None
    tx_hash: Optional[str] = None

    error: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, user_id: int, token_in: str, token_out: str, amount_in: Decimal) -> "Order":
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_in=token_in.upper(),
            token_out=token_out.upper(),
            amount_in=Decimal(amount_in),
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def execution_price(self) -> Optional[Decimal]:
        """Output per unit of input, once routed."""
        if self.amount_out is None or not self.amount_in:
            return None
        return self.amount_out / self.amount_in

    def check_transition(
        self,
        status: OrderStatus,
        amount_out: Optional[Decimal] = None,
        selected_dex: Optional[str] = None,
        tx_hash: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Validate a transition without applying it.

        Raises:
            InvalidTransitionError: The move or one of the field writes is not allowed
        """
        if self.is_terminal:
            raise InvalidTransitionError(
                self.id, f"already {self.status.value}, cannot move to {status.value}"
            )

        if status == OrderStatus.FAILED:
            pass
        elif status != self.status and NEXT_STATUS.get(self.status) != status:
            raise InvalidTransitionError(
                self.id, f"cannot move from {self.status.value} to {status.value}"
            )

        if error is not None and status != OrderStatus.FAILED:
            raise InvalidTransitionError(self.id, f"error can only be set on failed, not {status.value}")

        updates = {"amount_out": amount_out, "selected_dex": selected_dex, "tx_hash": tx_hash}
        for name, value in updates.items():
            current = getattr(self, name)
            if value is None or current is None:
                continue
            if name == "amount_out":
                same = Decimal(current) == Decimal(value)
            else:
                same = current == value
            if not same:
                raise InvalidTransitionError(self.id, f"{name} already set to {current}")

    def apply_transition(
        self,
        status: OrderStatus,
        amount_out: Optional[Decimal] = None,
        selected_dex: Optional[str] = None,
        tx_hash: Optional[str] = None,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Validate and apply a transition in place."""
        self.check_transition(status, amount_out, selected_dex, tx_hash, error)

        self.status = status
        if amount_out is not None and self.amount_out is None:
            self.amount_out = Decimal(amount_out)
        if selected_dex is not None and self.selected_dex is None:
            self.selected_dex = selected_dex
        if tx_hash is not None and self.tx_hash is None:
            self.tx_hash = tx_hash
        if error is not None:
            self.error = error

        now = now or utcnow()
        if now > self.updated_at:
            self.updated_at = now

    def to_status_update(self) -> StatusUpdate:
        """Full snapshot of the order as a status update."""
        return StatusUpdate(
            order_id=self.id,
            status=self.status,
            token_in=self.token_in,
            token_out=self.token_out,
            amount_in=self.amount_in,
            selected_dex=self.selected_dex,
            tx_hash=self.tx_hash,
            execution_price=self.execution_price if self.status == OrderStatus.CONFIRMED else None,
            amount_out=self.amount_out,
            error=self.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out) if self.amount_out is not None else None,
            "status": self.status.value,
            "selected_dex": self.selected_dex,
            "tx_hash": self.tx_hash,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
