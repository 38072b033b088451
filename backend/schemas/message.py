# schemas/message.py
from pydantic import Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from schemas.common import CamelModel
from utils.clock import to_naive_utc


# Input schema for a plain negotiation message
class MessageIn(CamelModel):
    content: str = Field(min_length=1, max_length=5000)
    client_ref: Optional[str] = Field(default=None, max_length=64)


class QuotationItemIn(CamelModel):
    name: str = Field(min_length=1)
    quantity: float = Field(gt=0, allow_inf_nan=False)
    unit: Optional[str] = None
    unit_price: float = Field(ge=0, allow_inf_nan=False)


# Input schema for a vendor quotation; amount is derived when items are given
class QuotationIn(CamelModel):
    amount: Optional[float] = Field(default=None, allow_inf_nan=False)
    currency: Optional[str] = None
    items: List[QuotationItemIn] = Field(default_factory=list)
    note: Optional[str] = Field(default=None, max_length=2000)
    valid_until: Optional[datetime] = None
    in_response_to: Optional[int] = None
    client_ref: Optional[str] = Field(default=None, max_length=64)

    @field_validator("valid_until")
    @classmethod
    def _naive_utc(cls, v):
        return to_naive_utc(v)


# Optional invoice terms supplied with an acceptance
class AcceptQuotationIn(CamelModel):
    tax_rate: Optional[float] = Field(default=None, ge=0, le=100, allow_inf_nan=False)
    discount: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    due_days: Optional[int] = Field(default=None, ge=0, le=365)
    notes: Optional[str] = Field(default=None, max_length=2000)


class RejectQuotationIn(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)


# Wire envelope of one message, shared by REST responses and newMessage events
class MessageOut(CamelModel):
    id: int
    order_id: int
    type: str
    sender_id: Optional[int] = None
    sender_role: str
    content: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    system_event: Optional[str] = None
    client_ref: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_message(cls, message) -> "MessageOut":
        payload = message.payload
        if message.quotation is not None:
            payload = quotation_payload(message.quotation)
        return cls(
            id=message.id,
            order_id=message.order_id,
            type=message.message_type,
            sender_id=message.sender_id,
            sender_role=message.sender_role,
            content=message.content,
            payload=payload,
            system_event=message.system_event,
            client_ref=message.client_ref,
            created_at=message.created_at,
        )


# Quotation messages render the live quotation state
def quotation_payload(quotation) -> dict:
    return {
        "quotationId": quotation.id,
        "amount": quotation.amount,
        "currency": quotation.currency,
        "note": quotation.note,
        "items": [
            {
                "name": it["name"],
                "quantity": it["quantity"],
                "unit": it.get("unit"),
                "unitPrice": it["unit_price"],
                "total": it["total"],
            }
            for it in (quotation.items or [])
        ],
        "validUntil": quotation.valid_until.isoformat() if quotation.valid_until else None,
        "status": quotation.status,
        "inResponseTo": quotation.in_response_to_id,
        "rejectionReason": quotation.rejection_reason,
    }


class MessagesPage(CamelModel):
    items: List[MessageOut]
    total: int
