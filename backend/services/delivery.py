# backend/services/delivery.py
import logging
import math
from typing import List

from sqlalchemy import update

from models.message import MessageType
from models.order import DELIVERY_STATUSES, DeliveryReceipt, DeliveryStage, Order, OrderItem, OrderStatus
from models.users import User
from services.base import OrderService
from services.errors import ValidationError
from services.message_log import MessageLog
from utils.clock import utcnow

logger = logging.getLogger(__name__)

# Forward order of the main delivery track
STAGE_ORDER = [
    DeliveryStage.NOT_STARTED.value,
    DeliveryStage.PREPARING.value,
    DeliveryStage.PACKED.value,
    DeliveryStage.DISPATCHED.value,
    DeliveryStage.IN_TRANSIT.value,
    DeliveryStage.OUT_FOR_DELIVERY.value,
    DeliveryStage.DELIVERED.value,
]

# Goods may be received while delivery runs and after the vendor marks it done
RECEIPT_STATUSES = DELIVERY_STATUSES | {OrderStatus.COMPLETED.value}

# Stages from which a partial delivery may be reported
PARTIAL_FROM = {
    DeliveryStage.IN_TRANSIT.value,
    DeliveryStage.OUT_FOR_DELIVERY.value,
    DeliveryStage.PARTIALLY_DELIVERED.value,
}


def can_advance(current: str, new: str) -> bool:
    """True when ``new`` is a legal next stage after ``current``.

    Repeating the current stage is allowed so tracking details can be amended.
    The partial side branch is entered from in_transit or later and leaves
    only towards delivered.
    """
    if new == current:
        return True
    if new == DeliveryStage.PARTIALLY_DELIVERED.value:
        return current in PARTIAL_FROM
    if current == DeliveryStage.PARTIALLY_DELIVERED.value:
        return new == DeliveryStage.DELIVERED.value
    return STAGE_ORDER.index(new) > STAGE_ORDER.index(current)


# Order status implied by reaching a delivery stage
def status_for_stage(order_status: str, stage: str) -> str:
    if stage == DeliveryStage.DELIVERED.value:
        return OrderStatus.COMPLETED.value
    if stage == DeliveryStage.PARTIALLY_DELIVERED.value:
        return OrderStatus.PARTIALLY_DELIVERED.value
    if stage != DeliveryStage.NOT_STARTED.value and order_status == OrderStatus.ACCEPTED.value:
        return OrderStatus.IN_PROGRESS.value
    return order_status


class DeliveryTracker(OrderService):
    """Vendor-driven delivery sub-lifecycle of an accepted order."""

    def __init__(self, db):
        super().__init__(db)
        self.log = MessageLog(db)

    def get_tracking(self, actor: User, order_id: int) -> Order:
        order = self._order(order_id)
        self._require_read(actor, order)
        return order

    def update_delivery_status(
        self,
        actor: User,
        order_id: int,
        stage: str,
        *,
        tracking_number: str = None,
        carrier: str = None,
        expected_arrival=None,
        notes: str = None,
    ) -> Order:
        order = self._order(order_id)
        self._require_vendor_of(actor, order, "update delivery status")
        stage = DeliveryStage(stage).value
        if order.status not in DELIVERY_STATUSES:
            self._refuse(order, "updateDeliveryStatus", f"Delivery cannot be updated while the order is {order.status}")

        previous = order.delivery_stage
        if not can_advance(previous, stage):
            self._refuse(
                order, "updateDeliveryStatus",
                f"Delivery stage cannot move from {previous} to {stage}",
                currentStage=previous, requestedStage=stage,
            )

        new_status = status_for_stage(order.status, stage)
        with self.transaction():
            now = utcnow()
            values = {
                "delivery_stage": stage,
                "delivery_updated_at": now,
                "delivery_updated_by": actor.id,
                "status": new_status,
            }
            # Omitted tracking fields keep their stored value
            if tracking_number is not None:
                values["tracking_number"] = tracking_number
            if carrier is not None:
                values["carrier"] = carrier
            if expected_arrival is not None:
                values["expected_arrival"] = expected_arrival
            if notes is not None:
                values["delivery_notes"] = notes
            if stage == DeliveryStage.DELIVERED.value:
                values["delivered_at"] = now
                values["completed_at"] = now

            # Stage and status flip in one statement, guarded by both stored values
            self._claim_order(
                order, "updateDeliveryStatus",
                expected=[order.status],
                values=values,
                where=[Order.delivery_stage == previous],
            )
            message = self.log.append(
                order.id,
                MessageType.DELIVERY,
                sender=actor,
                content=f"Delivery status: {stage.replace('_', ' ')}",
                payload={
                    "stage": stage,
                    "previousStage": previous,
                    "trackingNumber": order.tracking_number,
                    "carrier": order.carrier,
                    "expectedArrival": order.expected_arrival.isoformat() if order.expected_arrival else None,
                    "notes": notes,
                },
                system_event="delivery_update",
            )
            messages = [message]
            if new_status == OrderStatus.COMPLETED.value:
                messages.append(self.log.append_system(order.id, "order_completed", "Order delivered and completed", actor))
            self._audit(actor, "DELIVERY_UPDATE", order, meta={"from": previous, "to": stage, "status": new_status})
            for m in messages:
                self._emit_message(m)
            self._emit_order(order)
        logger.info("Order %s delivery %s -> %s (status %s)", order.id, previous, stage, order.status)
        return order

    def record_receipt(
        self,
        actor: User,
        order_id: int,
        lines: List[dict],
        *,
        received_at=None,
        delivered_by: str = None,
        notes: str = None,
    ) -> DeliveryReceipt:
        """Record goods received on site against the order lines.

        Quantities accumulate on each order item. The order status and the
        delivery stage stay with the vendor's reports.
        """
        order = self._order(order_id)
        self._require_admin(actor, "record a delivery receipt")
        if order.status not in RECEIPT_STATUSES:
            self._refuse(order, "recordDelivery", f"Goods cannot be received while the order is {order.status}")

        items = {it.id: it for it in order.items}
        received = {}
        for line in lines:
            item = items.get(line["item_id"])
            if item is None:
                raise ValidationError("Item does not belong to this order", orderId=order.id, itemId=line["item_id"])
            quantity = line["quantity"]
            if not math.isfinite(quantity) or quantity <= 0:
                raise ValidationError("Received quantity must be a positive number", itemId=item.id)
            received[item.id] = received.get(item.id, 0.0) + quantity
        if not received:
            raise ValidationError("A delivery receipt needs at least one line", orderId=order.id)

        with self.transaction():
            now = utcnow()
            self._claim_order(order, "recordDelivery", expected=[order.status], values={})
            for item_id, quantity in received.items():
                # Increment in SQL so concurrent receipts add up
                self.db.execute(
                    update(OrderItem)
                    .where(OrderItem.id == item_id)
                    .values(received_quantity=OrderItem.received_quantity + quantity)
                    .execution_options(synchronize_session=False)
                )
            receipt = DeliveryReceipt(
                order_id=order.id,
                received_by=actor.id,
                received_at=received_at or now,
                delivered_by=delivered_by,
                notes=notes,
                lines=[{"item_id": i, "name": items[i].name, "quantity": q} for i, q in received.items()],
                created_at=now,
            )
            self.db.add(receipt)
            self.db.flush()
            for item in order.items:
                self.db.refresh(item)

            message = self.log.append(
                order.id,
                MessageType.DELIVERY,
                sender=actor,
                content=f"Goods received: {len(received)} line(s)",
                payload={
                    "receiptId": receipt.id,
                    "items": [
                        {
                            "itemId": it.id,
                            "name": it.name,
                            "quantity": received[it.id],
                            "receivedTotal": it.received_quantity,
                            "ordered": it.quantity,
                        }
                        for it in order.items if it.id in received
                    ],
                    "deliveredBy": delivered_by,
                    "notes": notes,
                },
                system_event="delivery_received",
            )
            self._audit(actor, "DELIVERY_RECEIPT", order, meta={"receipt_id": receipt.id, "lines": len(received)})
            self._emit_message(message)
            self._emit_order(order)
        logger.info("Order %s receipt %s recorded by user %s", order.id, receipt.id, actor.id)
        return receipt

    def list_receipts(self, actor: User, order_id: int) -> List[DeliveryReceipt]:
        order = self._order(order_id)
        self._require_read(actor, order)
        return (
            self.db.query(DeliveryReceipt)
            .filter(DeliveryReceipt.order_id == order.id)
            .order_by(DeliveryReceipt.received_at, DeliveryReceipt.id)
            .all()
        )
