# schemas/order.py
from pydantic import Field
from typing import List, Optional
from datetime import datetime

from schemas.common import CamelModel


# Input schema for one material line on a new order
class OrderItemIn(CamelModel):
    name: str = Field(min_length=1)
    quantity: float = Field(gt=0)
    unit: str = Field(min_length=1)
    estimated_unit_price: float = Field(default=0.0, ge=0)


# Input schema for creating a draft order
class OrderCreate(CamelModel):
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    project_id: int
    vendor_id: int
    currency: Optional[str] = None
    items: List[OrderItemIn] = Field(min_length=1)


# Optional reason attached to cancel/reject actions
class ReasonIn(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class OrderItemOut(CamelModel):
    id: int
    name: str
    quantity: float
    unit: str
    estimated_unit_price: float
    received_quantity: float = 0.0


class DeliveryTrackingOut(CamelModel):
    stage: str = Field(validation_alias="delivery_stage")
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    expected_arrival: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, validation_alias="delivery_notes")
    updated_at: Optional[datetime] = Field(default=None, validation_alias="delivery_updated_at")
    updated_by: Optional[int] = Field(default=None, validation_alias="delivery_updated_by")
    delivered_at: Optional[datetime] = None


# Full order snapshot
class OrderOut(CamelModel):
    id: int
    order_number: Optional[str] = None
    title: str
    description: Optional[str] = None
    project_id: int
    vendor_id: int
    created_by: int
    status: str
    version: int
    currency: str
    estimated_total: float
    final_amount: Optional[float] = None
    chat_closed: bool
    chat_closed_at: Optional[datetime] = None
    accepted_message_id: Optional[int] = None
    last_message_at: Optional[datetime] = None
    created_at: datetime
    sent_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemOut]
    delivery_tracking: DeliveryTrackingOut

    @classmethod
    def from_order(cls, order) -> "OrderOut":
        data = {c: getattr(order, c) for c in cls.model_fields if c not in ("items", "delivery_tracking")}
        data["items"] = [OrderItemOut.model_validate(it) for it in order.items]
        data["delivery_tracking"] = DeliveryTrackingOut.model_validate(order)
        return cls(**data)


# Payload of the orderUpdated event
class OrderUpdated(CamelModel):
    order_id: int
    version: int
    status: str
    chat_closed: bool
    final_amount: Optional[float] = None
    delivery_tracking: DeliveryTrackingOut

    @classmethod
    def from_order(cls, order) -> "OrderUpdated":
        return cls(
            order_id=order.id,
            version=order.version,
            status=order.status,
            chat_closed=order.chat_closed,
            final_amount=order.final_amount,
            delivery_tracking=DeliveryTrackingOut.model_validate(order),
        )


# Schema for paginated order lists
class OrdersPage(CamelModel):
    items: List[OrderOut]
    total: int
    page: int
    page_size: int


class DeliveryOverview(CamelModel):
    active: List[OrderOut]
    delivered: List[OrderOut]


class UnreadCount(CamelModel):
    count: int
