# schemas/delivery.py
from pydantic import Field, field_validator
from typing import List, Optional
from datetime import datetime

from models.order import DeliveryStage
from schemas.common import CamelModel
from utils.clock import to_naive_utc


# Vendor's delivery progress report; omitted tracking fields keep their stored value
class DeliveryUpdateIn(CamelModel):
    stage: DeliveryStage
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    carrier: Optional[str] = Field(default=None, max_length=100)
    expected_arrival: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("expected_arrival")
    @classmethod
    def _naive_utc(cls, v):
        return to_naive_utc(v)


class ReceiptLineIn(CamelModel):
    item_id: int
    quantity: float = Field(gt=0, allow_inf_nan=False)


# Buyer-side confirmation of goods received against order lines
class DeliveryReceiptIn(CamelModel):
    items: List[ReceiptLineIn] = Field(min_length=1)
    received_at: Optional[datetime] = None
    delivered_by: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("received_at")
    @classmethod
    def _naive_utc(cls, v):
        return to_naive_utc(v)


class ReceiptLineOut(CamelModel):
    item_id: int
    name: str
    quantity: float


class DeliveryReceiptOut(CamelModel):
    id: int
    order_id: int
    received_by: int
    received_at: datetime
    delivered_by: Optional[str] = None
    notes: Optional[str] = None
    lines: List[ReceiptLineOut]
    created_at: datetime
