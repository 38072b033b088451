# backend/services/base.py
import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from models.order import Order
from models.users import User
from schemas.message import MessageOut
from schemas.order import OrderUpdated
from services.errors import InvalidTransition, NotAuthorized, NotFound
from utils.audit import write_log
from utils.events import Event, NEW_MESSAGE, ORDER_UPDATED, order_room, vendor_room

logger = logging.getLogger(__name__)


# Admins and owners see every order; vendors their own; clients those of their projects
def can_read(actor: User, order: Order) -> bool:
    if actor.is_admin:
        return True
    if actor.is_vendor:
        return order.vendor_id == actor.id
    return order.project is not None and order.project.client_id == actor.id


class OrderService:
    """Shared unit-of-work plumbing for the negotiation services.

    Each public operation runs inside ``transaction()``: one commit on
    success, a rollback on any exception. Events staged with ``_emit`` become
    visible in ``self.events`` only after the commit returns, so a route can
    publish them without ever announcing a write that failed.
    """

    def __init__(self, db: Session):
        self.db = db
        self.events: List[Event] = []
        self._staged: Optional[List[Event]] = None

    @contextmanager
    def transaction(self):
        staged: List[Event] = []
        self._staged = staged
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        finally:
            self._staged = None
        self.events.extend(staged)

    def _emit(self, name: str, data: dict, rooms: Iterable[str]) -> None:
        event = Event(name=name, data=data, rooms=tuple(rooms))
        if self._staged is None:
            self.events.append(event)
        else:
            self._staged.append(event)

    def _emit_message(self, message) -> None:
        self._emit(NEW_MESSAGE, MessageOut.from_message(message).wire(), [order_room(message.order_id)])

    def _emit_order(self, order: Order) -> None:
        self._emit(
            ORDER_UPDATED,
            OrderUpdated.from_order(order).wire(),
            [order_room(order.id), vendor_room(order.vendor_id)],
        )

    def _audit(self, actor: Optional[User], action: str, order: Order, meta: dict = None, resource: str = "orders"):
        write_log(
            self.db,
            user_id=actor.id if actor else None,
            order_id=order.id,
            action=action,
            resource=resource,
            meta=meta,
            commit=False,
        )

    # Load an order or fail with NotFound
    def _order(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFound("Order not found", orderId=order_id)
        return order

    def _require_read(self, actor: User, order: Order) -> None:
        if not can_read(actor, order):
            raise NotAuthorized("Not allowed to view this order", orderId=order.id)

    def _require_admin(self, actor: User, action: str) -> None:
        if not actor.is_admin:
            raise NotAuthorized(f"Only an admin or owner may {action}", action=action)

    def _require_vendor_of(self, actor: User, order: Order, action: str) -> None:
        if not actor.is_vendor or actor.id != order.vendor_id:
            raise NotAuthorized(f"Only the assigned vendor may {action}", action=action)

    def _refuse(self, order: Order, action: str, detail: str, quotation_status: str = None, error=InvalidTransition, **state):
        raise error(
            detail,
            action=action,
            current_status=order.status,
            quotation_status=quotation_status,
            version=order.version,
            orderId=order.id,
            **state,
        )

    def _claim_order(self, order: Order, action: str, *, expected, values: dict, where=(), bump: bool = True) -> Order:
        """Atomically move the order out of one of ``expected`` statuses.

        The UPDATE only matches while the stored status (and any extra
        ``where`` clauses) still hold. Losing that race rolls back the whole
        unit and raises InvalidTransition carrying the fresh stored state.
        """
        values = dict(values)
        if bump:
            values["version"] = Order.version + 1
        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.status.in_(list(expected)), *where)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            fresh = self._reload_after_conflict(order.id, action)
            self._refuse(fresh, action, f"Order is {fresh.status}; cannot {action}")
        self.db.refresh(order)
        return order

    def _reload_after_conflict(self, order_id: int, action: str) -> Order:
        self.db.rollback()
        fresh = self._order(order_id)
        self.db.refresh(fresh)
        logger.info("Lost race on order %s during %s; stored status is %s", order_id, action, fresh.status)
        return fresh
