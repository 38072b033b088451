# backend/routes/negotiation.py
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from schemas.invoice import InvoiceOut, QuotationAcceptedOut
from schemas.message import AcceptQuotationIn, MessageOut, QuotationIn, RejectQuotationIn
from schemas.order import OrderOut
from services.message_log import MessageLog
from services.negotiation import NegotiationService
from utils.events import EventBus, get_event_bus, publish_after_response
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/orders", tags=["Negotiation"])


# Vendor submits a (revised) quotation
@router.post("/{order_id}/quotation", response_model=MessageOut, status_code=201)
def submit_quotation(
    order_id: int,
    payload: QuotationIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    service = NegotiationService(db)
    data = payload.model_dump()
    data["items"] = [it.model_dump() for it in payload.items]
    message, _ = service.submit_quotation(current_user, order_id, data)
    publish_after_response(background_tasks, bus, service.events)
    return MessageOut.from_message(message)


# Accepting closes the chat and issues the invoice in one transaction
@router.put("/{order_id}/quotation/{message_id}/accept", response_model=QuotationAcceptedOut)
def accept_quotation(
    order_id: int,
    message_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[AcceptQuotationIn] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    service = NegotiationService(db)
    terms = payload.model_dump(exclude_none=True) if payload else None
    order, invoice = service.accept_quotation(current_user, order_id, message_id, terms)
    publish_after_response(background_tasks, bus, service.events)
    return QuotationAcceptedOut(order=OrderOut.from_order(order), invoice=InvoiceOut.model_validate(invoice))


@router.put("/{order_id}/quotation/{message_id}/reject", response_model=MessageOut)
def reject_quotation(
    order_id: int,
    message_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[RejectQuotationIn] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    service = NegotiationService(db)
    quotation = service.reject_quotation(current_user, order_id, message_id, reason=payload.reason if payload else None)
    publish_after_response(background_tasks, bus, service.events)
    message = MessageLog(db).get_message(quotation.message_id)
    return MessageOut.from_message(message)
