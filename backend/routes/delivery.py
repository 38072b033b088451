# backend/routes/delivery.py
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from schemas.delivery import DeliveryReceiptIn, DeliveryReceiptOut, DeliveryUpdateIn
from schemas.order import DeliveryTrackingOut, OrderOut
from services.delivery import DeliveryTracker
from utils.events import EventBus, get_event_bus, publish_after_response
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/orders", tags=["Delivery"])


# Vendor reports delivery progress
@router.put("/{order_id}/delivery-status", response_model=OrderOut)
def update_delivery_status(
    order_id: int,
    payload: DeliveryUpdateIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    tracker = DeliveryTracker(db)
    order = tracker.update_delivery_status(
        current_user,
        order_id,
        payload.stage.value,
        tracking_number=payload.tracking_number,
        carrier=payload.carrier,
        expected_arrival=payload.expected_arrival,
        notes=payload.notes,
    )
    publish_after_response(background_tasks, bus, tracker.events)
    return OrderOut.from_order(order)


@router.get("/{order_id}/delivery-tracking", response_model=DeliveryTrackingOut)
def delivery_tracking(order_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return DeliveryTrackingOut.model_validate(DeliveryTracker(db).get_tracking(current_user, order_id))


# Buyer side confirms goods received on site
@router.post("/{order_id}/delivery-receipts", response_model=DeliveryReceiptOut, status_code=201)
def record_delivery_receipt(
    order_id: int,
    payload: DeliveryReceiptIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    tracker = DeliveryTracker(db)
    receipt = tracker.record_receipt(
        current_user,
        order_id,
        [line.model_dump() for line in payload.items],
        received_at=payload.received_at,
        delivered_by=payload.delivered_by,
        notes=payload.notes,
    )
    publish_after_response(background_tasks, bus, tracker.events)
    return DeliveryReceiptOut.model_validate(receipt)


@router.get("/{order_id}/delivery-receipts", response_model=List[DeliveryReceiptOut])
def list_delivery_receipts(order_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return [DeliveryReceiptOut.model_validate(r) for r in DeliveryTracker(db).list_receipts(current_user, order_id)]
