# backend/services/ledger.py
import logging
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import selectinload

from config import settings
from models.invoice import Invoice, InvoiceStatus
from models.message import Quotation, QuotationStatus
from models.order import (
    AGREED_STATUSES,
    TERMINAL_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
)
from models.project import Project, project_vendors
from models.users import User
from services.base import OrderService
from services.errors import NotFound, ValidationError
from services.message_log import MessageLog
from utils.clock import utcnow

logger = logging.getLogger(__name__)


class OrderLedger(OrderService):
    """Persistent purchase-order record and its buyer-side transitions."""

    def __init__(self, db):
        super().__init__(db)
        self.log = MessageLog(db)

    # Create a draft order for a vendor assigned to the project
    def create_order(
        self,
        actor: User,
        *,
        title: str,
        project_id: int,
        vendor_id: int,
        items: List[dict],
        description: str = None,
        currency: str = None,
    ) -> Order:
        self._require_admin(actor, "create orders")
        if not items:
            raise ValidationError("An order needs at least one item")

        project = self.db.get(Project, project_id)
        if project is None:
            raise NotFound("Project not found", projectId=project_id)
        vendor = self.db.get(User, vendor_id)
        if vendor is None or not vendor.is_vendor:
            raise ValidationError("Vendor reference is not a vendor", vendorId=vendor_id)
        assigned = (
            self.db.query(project_vendors)
            .filter(project_vendors.c.project_id == project_id, project_vendors.c.vendor_id == vendor_id)
            .first()
        )
        if assigned is None:
            raise ValidationError("Vendor is not assigned to this project", vendorId=vendor_id, projectId=project_id)

        with self.transaction():
            now = utcnow()
            order = Order(
                title=title,
                description=description,
                project_id=project_id,
                vendor_id=vendor_id,
                created_by=actor.id,
                status=OrderStatus.DRAFT.value,
                version=1,
                currency=currency or settings.DEFAULT_CURRENCY,
                created_at=now,
            )
            for it in items:
                order.items.append(OrderItem(
                    name=it["name"],
                    quantity=it["quantity"],
                    unit=it["unit"],
                    estimated_unit_price=it.get("estimated_unit_price") or 0.0,
                ))
            order.estimated_total = round(sum(i.quantity * i.estimated_unit_price for i in order.items), 2)
            self.db.add(order)
            self.db.flush()
            order.order_number = f"PO-{now:%Y%m%d}-{order.id}"
            self.log.append_system(order.id, "order_created", f"Order {order.order_number} created", actor)
            self._audit(actor, "ORDER_CREATE", order, meta={"vendor_id": vendor_id, "project_id": project_id})
        logger.info("Order %s created by user %s for vendor %s", order.id, actor.id, vendor_id)
        return order

    # draft -> sent; the vendor is notified through its vendor room
    def send_order(self, actor: User, order_id: int) -> Order:
        order = self._order(order_id)
        self._require_admin(actor, "send orders")
        if order.status != OrderStatus.DRAFT.value:
            self._refuse(order, "sendOrder", f"Only draft orders can be sent; order is {order.status}")
        with self.transaction():
            self._claim_order(
                order, "sendOrder",
                expected=[OrderStatus.DRAFT.value],
                values={"status": OrderStatus.SENT.value, "sent_at": utcnow()},
            )
            message = self.log.append_system(order.id, "order_sent", "Order sent to vendor", actor)
            self._audit(actor, "ORDER_SEND", order)
            self._emit_message(message)
            self._emit_order(order)
        return order

    # Any non-terminal status -> cancelled
    def cancel_order(self, actor: User, order_id: int, reason: str = None) -> Order:
        order = self._order(order_id)
        self._require_admin(actor, "cancel orders")
        if order.is_terminal:
            self._refuse(order, "cancelOrder", f"Order is already {order.status}")
        open_statuses = [s.value for s in OrderStatus if s.value not in TERMINAL_STATUSES]
        with self.transaction():
            now = utcnow()
            self._claim_order(
                order, "cancelOrder",
                expected=open_statuses,
                values={
                    "status": OrderStatus.CANCELLED.value,
                    "cancelled_at": now,
                    "final_amount": None,
                    "chat_closed": True,
                    "chat_closed_at": order.chat_closed_at or now,
                },
            )
            cancelled_invoices = self.db.execute(
                update(Invoice)
                .where(Invoice.order_id == order.id, Invoice.status == InvoiceStatus.PENDING)
                .values(status=InvoiceStatus.CANCELLED)
                .execution_options(synchronize_session=False)
            ).rowcount
            message = self.log.append_system(
                order.id, "order_cancelled", "Order cancelled", actor, reason=reason
            )
            self._audit(actor, "ORDER_CANCEL", order, meta={"reason": reason, "invoices_cancelled": cancelled_invoices})
            self._emit_message(message)
            self._emit_order(order)
        return order

    # Buyer closes the order once fulfillment is confirmed
    def complete_order(self, actor: User, order_id: int) -> Order:
        order = self._order(order_id)
        self._require_admin(actor, "complete orders")
        completable = [s for s in AGREED_STATUSES if s != OrderStatus.COMPLETED.value]
        if order.status not in completable:
            self._refuse(order, "completeOrder", f"Order is {order.status}; only accepted orders can be completed")
        with self.transaction():
            self._claim_order(
                order, "completeOrder",
                expected=completable,
                values={"status": OrderStatus.COMPLETED.value, "completed_at": utcnow()},
            )
            message = self.log.append_system(order.id, "order_completed", "Order completed", actor)
            self._audit(actor, "ORDER_COMPLETE", order)
            self._emit_message(message)
            self._emit_order(order)
        return order

    # Buyer ends negotiation without accepting; pending quotations are rejected with it
    def reject_order(self, actor: User, order_id: int, reason: str = None) -> Order:
        order = self._order(order_id)
        self._require_admin(actor, "reject orders")
        negotiable = [OrderStatus.SENT.value, OrderStatus.IN_NEGOTIATION.value]
        if order.status not in negotiable:
            self._refuse(order, "rejectOrder", f"Order is {order.status}; only orders under negotiation can be rejected")
        with self.transaction():
            now = utcnow()
            self._claim_order(
                order, "rejectOrder",
                expected=negotiable,
                values={"status": OrderStatus.REJECTED.value, "chat_closed": True, "chat_closed_at": now},
            )
            self.db.execute(
                update(Quotation)
                .where(Quotation.order_id == order.id, Quotation.status == QuotationStatus.PENDING.value)
                .values(status=QuotationStatus.REJECTED.value, rejection_reason=reason, decided_at=now)
                .execution_options(synchronize_session=False)
            )
            message = self.log.append_system(order.id, "order_rejected", "Order rejected", actor, reason=reason)
            self._audit(actor, "ORDER_REJECT", order, meta={"reason": reason})
            self._emit_message(message)
            self._emit_order(order)
        return order

    def get_order(self, actor: User, order_id: int) -> Order:
        order = self._order(order_id)
        self._require_read(actor, order)
        return order

    def _visible(self, actor: User):
        query = self.db.query(Order).options(selectinload(Order.items))
        if actor.is_admin:
            return query
        if actor.is_vendor:
            return query.filter(Order.vendor_id == actor.id)
        return query.join(Project, Project.id == Order.project_id).filter(Project.client_id == actor.id)

    def list_orders(
        self,
        actor: User,
        *,
        status: Optional[str] = None,
        project_id: Optional[int] = None,
        vendor_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Order], int]:
        query = self._visible(actor)
        if status:
            query = query.filter(Order.status == status)
        if project_id is not None:
            query = query.filter(Order.project_id == project_id)
        if vendor_id is not None:
            query = query.filter(Order.vendor_id == vendor_id)
        total = query.count()
        items = query.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
        return items, total

    # Vendor's own orders; drafts stay private to the buyer
    def vendor_orders(self, actor: User, status: Optional[str] = None) -> List[Order]:
        if not actor.is_vendor:
            return []
        query = self._visible(actor).filter(Order.status != OrderStatus.DRAFT.value)
        if status:
            query = query.filter(Order.status == status)
        return query.order_by(Order.created_at.desc(), Order.id.desc()).all()

    # Post-acceptance orders split into still moving and delivered
    def delivery_overview(self, actor: User) -> Tuple[List[Order], List[Order]]:
        self._require_admin(actor, "view the delivery overview")
        orders = (
            self._visible(actor)
            .filter(Order.status.in_(list(AGREED_STATUSES)))
            .order_by(Order.delivery_updated_at.desc(), Order.id.desc())
            .all()
        )
        active = [o for o in orders if o.status != OrderStatus.COMPLETED.value]
        delivered = [o for o in orders if o.status == OrderStatus.COMPLETED.value]
        return active, delivered
