# backend/services/message_log.py
import logging
from typing import List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import selectinload

from models.message import MessageRead, MessageType, NegotiationMessage
from models.order import Order
from models.project import Project
from models.users import User
from services.base import OrderService
from utils.clock import utcnow

logger = logging.getLogger(__name__)

SYSTEM_ROLE = "system"


class MessageLog(OrderService):
    """Append-only, time ordered log of negotiation entries per order.

    ``append`` performs no legality checks; the negotiation services decide
    what may be written and call it inside their own transaction.
    """

    def append(
        self,
        order_id: int,
        message_type: MessageType,
        *,
        sender: Optional[User] = None,
        content: str = None,
        payload: dict = None,
        system_event: str = None,
        client_ref: str = None,
    ) -> NegotiationMessage:
        message = NegotiationMessage(
            order_id=order_id,
            sender_id=sender.id if sender else None,
            sender_role=(sender.role if sender else SYSTEM_ROLE),
            message_type=MessageType(message_type).value,
            content=content,
            payload=payload,
            system_event=system_event,
            client_ref=client_ref,
            created_at=utcnow(),
        )
        self.db.add(message)
        self.db.flush()
        return message

    # System entry recording a transition made by the state machine
    def append_system(self, order_id: int, system_event: str, content: str, actor: User = None, **payload) -> NegotiationMessage:
        if actor is not None:
            payload.setdefault("actorId", actor.id)
        return self.append(
            order_id,
            MessageType.SYSTEM,
            content=content,
            payload=payload or None,
            system_event=system_event,
        )

    # Messages of one order, ascending by creation time
    def list_messages(self, actor: User, order_id: int) -> List[NegotiationMessage]:
        order = self._order(order_id)
        self._require_read(actor, order)
        return (
            self.db.query(NegotiationMessage)
            .options(selectinload(NegotiationMessage.quotation))
            .filter(NegotiationMessage.order_id == order_id)
            .order_by(NegotiationMessage.created_at.asc(), NegotiationMessage.id.asc())
            .all()
        )

    def get_message(self, message_id: int) -> Optional[NegotiationMessage]:
        return (
            self.db.query(NegotiationMessage)
            .populate_existing()
            .options(selectinload(NegotiationMessage.quotation))
            .filter(NegotiationMessage.id == message_id)
            .first()
        )

    # Record read receipts for every message of the order not sent by the actor
    def mark_read(self, actor: User, order_id: int) -> int:
        order = self._order(order_id)
        self._require_read(actor, order)
        with self.transaction():
            unread = self._unread_query(actor).filter(NegotiationMessage.order_id == order_id).all()
            now = utcnow()
            for message in unread:
                self.db.add(MessageRead(message_id=message.id, user_id=actor.id, read_at=now))
        if unread:
            logger.debug("User %s marked %d messages read on order %s", actor.id, len(unread), order_id)
        return len(unread)

    def unread_count(self, actor: User) -> int:
        return self._unread_query(actor).with_entities(func.count(NegotiationMessage.id)).scalar() or 0

    def _unread_query(self, actor: User):
        query = (
            self.db.query(NegotiationMessage)
            .join(Order, Order.id == NegotiationMessage.order_id)
            .outerjoin(
                MessageRead,
                and_(MessageRead.message_id == NegotiationMessage.id, MessageRead.user_id == actor.id),
            )
            .filter(MessageRead.id.is_(None))
            .filter((NegotiationMessage.sender_id.is_(None)) | (NegotiationMessage.sender_id != actor.id))
        )
        if actor.is_admin:
            return query
        if actor.is_vendor:
            return query.filter(Order.vendor_id == actor.id)
        return query.join(Project, Project.id == Order.project_id).filter(Project.client_id == actor.id)
