# backend/routes/orders.py
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
import logging

from database import get_db
from models.users import User
from schemas.message import MessageIn, MessageOut
from schemas.order import (
    DeliveryOverview, OrderCreate, OrderOut, OrdersPage, ReasonIn, UnreadCount,
)
from services.ledger import OrderLedger
from services.message_log import MessageLog
from services.negotiation import NegotiationService
from utils.events import EventBus, get_event_bus, publish_after_response
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/orders", tags=["Orders"])
logger = logging.getLogger(__name__)


# Create a draft purchase order
@router.post("", response_model=OrderOut, status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ledger = OrderLedger(db)
    order = ledger.create_order(
        current_user,
        title=payload.title,
        description=payload.description,
        project_id=payload.project_id,
        vendor_id=payload.vendor_id,
        currency=payload.currency,
        items=[it.model_dump() for it in payload.items],
    )
    return OrderOut.from_order(order)


# Paginated list of the orders visible to the current user
@router.get("", response_model=OrdersPage)
def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    project_id: Optional[int] = Query(None),
    vendor_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = OrderLedger(db).list_orders(
        current_user, status=status, project_id=project_id, vendor_id=vendor_id, page=page, page_size=page_size,
    )
    return OrdersPage(items=[OrderOut.from_order(o) for o in items], total=total, page=page, page_size=page_size)


@router.get("/vendor/my-orders", response_model=List[OrderOut])
def my_vendor_orders(
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return [OrderOut.from_order(o) for o in OrderLedger(db).vendor_orders(current_user, status=status)]


@router.get("/unread-count", response_model=UnreadCount)
def unread_count(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return UnreadCount(count=MessageLog(db).unread_count(current_user))


@router.get("/delivery-overview", response_model=DeliveryOverview)
def delivery_overview(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    active, delivered = OrderLedger(db).delivery_overview(current_user)
    return DeliveryOverview(
        active=[OrderOut.from_order(o) for o in active],
        delivered=[OrderOut.from_order(o) for o in delivered],
    )


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return OrderOut.from_order(OrderLedger(db).get_order(current_user, order_id))


@router.put("/{order_id}/send", response_model=OrderOut)
def send_order(
    order_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    ledger = OrderLedger(db)
    order = ledger.send_order(current_user, order_id)
    publish_after_response(background_tasks, bus, ledger.events)
    return OrderOut.from_order(order)


@router.put("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[ReasonIn] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    ledger = OrderLedger(db)
    order = ledger.cancel_order(current_user, order_id, reason=payload.reason if payload else None)
    publish_after_response(background_tasks, bus, ledger.events)
    return OrderOut.from_order(order)


@router.put("/{order_id}/complete", response_model=OrderOut)
def complete_order(
    order_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    ledger = OrderLedger(db)
    order = ledger.complete_order(current_user, order_id)
    publish_after_response(background_tasks, bus, ledger.events)
    return OrderOut.from_order(order)


# Buyer ends the negotiation without accepting any quotation
@router.put("/{order_id}/reject", response_model=OrderOut)
def reject_order(
    order_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[ReasonIn] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    ledger = OrderLedger(db)
    order = ledger.reject_order(current_user, order_id, reason=payload.reason if payload else None)
    publish_after_response(background_tasks, bus, ledger.events)
    return OrderOut.from_order(order)


@router.get("/{order_id}/messages", response_model=List[MessageOut])
def list_messages(order_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return [MessageOut.from_message(m) for m in MessageLog(db).list_messages(current_user, order_id)]


@router.post("/{order_id}/messages", response_model=MessageOut, status_code=201)
def send_message(
    order_id: int,
    payload: MessageIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    service = NegotiationService(db)
    message = service.send_message(current_user, order_id, payload.content, client_ref=payload.client_ref)
    publish_after_response(background_tasks, bus, service.events)
    return MessageOut.from_message(message)


@router.put("/{order_id}/mark-read")
def mark_read(order_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    marked = MessageLog(db).mark_read(current_user, order_id)
    return {"orderId": order_id, "marked": marked}
