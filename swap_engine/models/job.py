"""
Queue payload for order execution.
"""
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class OrderJob(BaseModel):
    """
    Work item for one order.

    ``order_id`` is the uniqueness key of the job queue.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    order_id: str
    user_id: int
    wallet_address: str
    token_in: str
    token_out: str
    amount_in: Decimal = Field(..., gt=0)
    slippage: float = Field(0.01, ge=0, le=1)

    @field_validator("token_in", "token_out")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.upper()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw) -> "OrderJob":
        return cls.model_validate_json(raw)
