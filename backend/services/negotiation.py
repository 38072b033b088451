# backend/services/negotiation.py
import logging
import math
from typing import List, Optional, Tuple

from sqlalchemy import update

from models.invoice import Invoice
from models.message import MessageType, NegotiationMessage, Quotation, QuotationStatus
from models.order import Order, OrderStatus
from models.users import User
from services.base import OrderService
from services.errors import (
    AlreadyAccepted,
    AlreadyRejected,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    QuotationExpired,
    ValidationError,
)
from services.invoicing import InvoiceGenerator, InvoiceTerms, derive_invoice_totals
from services.message_log import MessageLog
from utils.clock import utcnow
from utils.events import QUOTATION_ACCEPTED, QUOTATION_REJECTED, QUOTATION_SUBMITTED, order_room

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.01

NEGOTIABLE = [OrderStatus.SENT.value, OrderStatus.IN_NEGOTIATION.value]
CHAT_BLOCKED = {OrderStatus.DRAFT.value, OrderStatus.CANCELLED.value}
CHAT_OPEN = [s.value for s in OrderStatus if s.value not in CHAT_BLOCKED]


# Normalise quotation lines and settle the quoted amount
def price_quotation(amount: Optional[float], items: List[dict]) -> Tuple[float, List[dict]]:
    lines = []
    for it in items:
        total = round(it["quantity"] * it["unit_price"], 2)
        lines.append({
            "name": it["name"],
            "quantity": it["quantity"],
            "unit": it.get("unit"),
            "unit_price": it["unit_price"],
            "total": total,
        })

    if lines:
        computed = round(sum(line["total"] for line in lines), 2)
        if amount is not None and abs(amount - computed) > AMOUNT_TOLERANCE:
            raise ValidationError(
                "Quotation amount does not match its items",
                amount=amount,
                itemsTotal=computed,
            )
        amount = computed
    elif amount is None:
        raise ValidationError("Quotation amount is required when no items are given")

    if not math.isfinite(amount):
        raise ValidationError("Quotation amount must be a finite number")
    if amount <= 0:
        raise ValidationError("Quotation amount must be positive", amount=amount)
    return round(amount, 2), lines


class NegotiationService(OrderService):
    """Quotation rounds and chat between the buyer side and the vendor."""

    def __init__(self, db):
        super().__init__(db)
        self.log = MessageLog(db)

    def _quotation(self, order: Order, message_id: int) -> Quotation:
        quotation = (
            self.db.query(Quotation)
            .populate_existing()
            .filter(Quotation.message_id == message_id, Quotation.order_id == order.id)
            .first()
        )
        if quotation is None:
            raise NotFound("Quotation not found on this order", orderId=order.id, messageId=message_id)
        return quotation

    # Plain text; blocked for drafts, cancelled orders and closed chats
    def send_message(self, actor: User, order_id: int, content: str, client_ref: str = None) -> NegotiationMessage:
        order = self._order(order_id)
        if not (actor.is_admin or (actor.is_vendor and actor.id == order.vendor_id)):
            raise NotAuthorized("Only the buyer side or the assigned vendor may post messages", orderId=order.id)
        if not content or not content.strip():
            raise ValidationError("Message content is required")
        if order.status in CHAT_BLOCKED or order.chat_closed:
            self._refuse(order, "sendMessage", "Chat is closed for this order")

        with self.transaction():
            now = utcnow()
            # Re-checks the chat guard in the same statement; messages do not bump the version
            self._claim_order(
                order, "sendMessage",
                expected=CHAT_OPEN,
                values={"last_message_at": now},
                where=[Order.chat_closed.is_(False)],
                bump=False,
            )
            message = self.log.append(
                order.id, MessageType.TEXT, sender=actor, content=content.strip(), client_ref=client_ref
            )
            self._emit_message(message)
        return message

    def submit_quotation(self, actor: User, order_id: int, data: dict) -> Tuple[NegotiationMessage, List[int]]:
        """Vendor posts a priced proposal.

        Every earlier pending quotation of the order is marked ``negotiated``
        in the same transaction, so at most one quotation is ever actionable.
        Returns the new quotation message and the superseded message ids.
        """
        order = self._order(order_id)
        self._require_vendor_of(actor, order, "submit quotations")
        if order.status not in NEGOTIABLE or order.chat_closed:
            self._refuse(order, "submitQuotation", f"Quotations are not accepted while the order is {order.status}")

        amount, lines = price_quotation(data.get("amount"), data.get("items") or [])
        valid_until = data.get("valid_until")
        if valid_until is not None and valid_until <= utcnow():
            raise ValidationError("validUntil must be in the future", validUntil=valid_until.isoformat())

        in_response_to = data.get("in_response_to")
        if in_response_to is not None:
            self._quotation(order, in_response_to)

        with self.transaction():
            now = utcnow()
            self._claim_order(
                order, "submitQuotation",
                expected=NEGOTIABLE,
                values={"status": OrderStatus.IN_NEGOTIATION.value, "last_message_at": now},
                where=[Order.chat_closed.is_(False)],
            )
            superseded = [
                row[0]
                for row in self.db.query(Quotation.message_id)
                .filter(Quotation.order_id == order.id, Quotation.status == QuotationStatus.PENDING.value)
                .all()
            ]
            if superseded:
                self.db.execute(
                    update(Quotation)
                    .where(Quotation.message_id.in_(superseded), Quotation.status == QuotationStatus.PENDING.value)
                    .values(status=QuotationStatus.NEGOTIATED.value, decided_at=now)
                    .execution_options(synchronize_session=False)
                )

            currency = data.get("currency") or order.currency
            message = self.log.append(
                order.id,
                MessageType.QUOTATION,
                sender=actor,
                content=f"Quotation: {amount:.2f} {currency}",
                client_ref=data.get("client_ref"),
            )
            quotation = Quotation(
                message_id=message.id,
                order_id=order.id,
                amount=amount,
                currency=currency,
                note=data.get("note"),
                items=lines,
                valid_until=valid_until,
                status=QuotationStatus.PENDING.value,
                in_response_to_id=in_response_to,
            )
            self.db.add(quotation)
            self.db.flush()
            self.db.refresh(message)
            self._audit(actor, "QUOTATION_SUBMIT", order, meta={
                "message_id": message.id, "amount": amount, "superseded": superseded,
            })
            self._emit_message(message)
            self._emit(QUOTATION_SUBMITTED, {
                "orderId": order.id, "messageId": message.id, "supersededIds": superseded,
            }, [order_room(order.id)])
            self._emit_order(order)
        logger.info("Vendor %s quoted %.2f %s on order %s", actor.id, amount, currency, order.id)
        return message, superseded

    # Shared pre-checks of accept and reject; expired quotations are marked before failing
    def _check_actionable(self, order: Order, quotation: Quotation, action: str, actor: User) -> None:
        status = quotation.status
        if status == QuotationStatus.ACCEPTED.value:
            error = AlreadyAccepted if action == "acceptQuotation" else InvalidTransition
            self._refuse(order, action, "Quotation has already been accepted", status, error=error)
        if status == QuotationStatus.REJECTED.value:
            error = AlreadyRejected if action == "rejectQuotation" else InvalidTransition
            self._refuse(order, action, "Quotation has already been rejected", status, error=error)
        if status != QuotationStatus.PENDING.value:
            self._refuse(order, action, f"Quotation is {status} and no longer actionable", status)
        if order.status != OrderStatus.IN_NEGOTIATION.value or order.chat_closed:
            self._refuse(order, action, f"Order is {order.status}; negotiation is closed", status)
        if quotation.valid_until is not None and quotation.valid_until < utcnow():
            self._expire(order, quotation, actor)
            self._refuse(order, action, "Quotation has expired", QuotationStatus.EXPIRED.value, error=QuotationExpired)

    # Durably mark a lapsed quotation expired; losing that race to another writer is harmless
    def _expire(self, order: Order, quotation: Quotation, actor: User) -> None:
        with self.transaction():
            claimed = self.db.execute(
                update(Quotation)
                .where(Quotation.id == quotation.id, Quotation.status == QuotationStatus.PENDING.value)
                .values(status=QuotationStatus.EXPIRED.value, decided_at=utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed:
                self._audit(actor, "QUOTATION_EXPIRE", order, meta={"message_id": quotation.message_id})
        self.db.refresh(quotation)
        logger.info("Quotation %s on order %s expired at %s", quotation.message_id, order.id, quotation.valid_until)

    def _claim_quotation(self, order: Order, quotation: Quotation, action: str, values: dict) -> None:
        claimed = self.db.execute(
            update(Quotation)
            .where(Quotation.id == quotation.id, Quotation.status == QuotationStatus.PENDING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed == 1:
            self.db.refresh(quotation)
            return

        fresh_order = self._reload_after_conflict(order.id, action)
        fresh = self.db.get(Quotation, quotation.id)
        self.db.refresh(fresh)
        error = InvalidTransition
        if fresh.status == QuotationStatus.ACCEPTED.value and action == "acceptQuotation":
            error = AlreadyAccepted
        elif fresh.status == QuotationStatus.REJECTED.value and action == "rejectQuotation":
            error = AlreadyRejected
        self._refuse(fresh_order, action, f"Quotation is {fresh.status} and no longer actionable", fresh.status, error=error)

    def accept_quotation(self, actor: User, order_id: int, message_id: int, terms: dict = None) -> Tuple[Order, Invoice]:
        """Accept a pending quotation and issue the order's invoice.

        The quotation claim, the order claim, the invoice and both system
        messages commit together or not at all.
        """
        order = self._order(order_id)
        self._require_admin(actor, "accept quotations")
        quotation = self._quotation(order, message_id)
        self._check_actionable(order, quotation, "acceptQuotation", actor)

        invoice_terms = InvoiceTerms.resolve(**(terms or {}))
        derive_invoice_totals(quotation.amount, invoice_terms.tax_rate, invoice_terms.discount)

        with self.transaction():
            now = utcnow()
            self._claim_quotation(order, quotation, "acceptQuotation", {
                "status": QuotationStatus.ACCEPTED.value, "decided_at": now,
            })
            self._claim_order(
                order, "acceptQuotation",
                expected=[OrderStatus.IN_NEGOTIATION.value],
                values={
                    "status": OrderStatus.ACCEPTED.value,
                    "final_amount": quotation.amount,
                    "chat_closed": True,
                    "chat_closed_at": now,
                    "accepted_at": now,
                    "accepted_message_id": quotation.message_id,
                },
                where=[Order.chat_closed.is_(False)],
            )
            invoice = InvoiceGenerator(self.db).generate(order, quotation, invoice_terms, actor)

            accepted_msg = self.log.append_system(
                order.id, "quotation_accepted",
                f"Quotation accepted: {quotation.amount:.2f} {quotation.currency}",
                actor,
                messageId=quotation.message_id,
                amount=quotation.amount,
            )
            invoice_msg = self.log.append(
                order.id,
                MessageType.INVOICE,
                content=f"Invoice {invoice.full_number} generated",
                payload={
                    "invoiceId": invoice.id,
                    "invoiceNumber": invoice.full_number,
                    "totalAmount": invoice.total_amount,
                    "amountDue": invoice.amount_due,
                    "currency": invoice.currency,
                    "dueDate": invoice.due_date.isoformat(),
                    "status": invoice.status.value,
                },
                system_event="invoice_generated",
            )
            self._audit(actor, "QUOTATION_ACCEPT", order, meta={
                "message_id": quotation.message_id, "amount": quotation.amount, "invoice_id": invoice.id,
            })
            self._emit_message(accepted_msg)
            self._emit_message(invoice_msg)
            self._emit(QUOTATION_ACCEPTED, {
                "orderId": order.id,
                "messageId": quotation.message_id,
                "invoiceId": invoice.id,
                "invoiceNumber": invoice.full_number,
            }, [order_room(order.id)])
            self._emit_order(order)
        logger.info("Order %s accepted at %.2f by user %s; invoice %s", order.id, order.final_amount, actor.id, invoice.full_number)
        return order, invoice

    def reject_quotation(self, actor: User, order_id: int, message_id: int, reason: str = None) -> Quotation:
        order = self._order(order_id)
        self._require_admin(actor, "reject quotations")
        quotation = self._quotation(order, message_id)
        self._check_actionable(order, quotation, "rejectQuotation", actor)

        with self.transaction():
            now = utcnow()
            self._claim_quotation(order, quotation, "rejectQuotation", {
                "status": QuotationStatus.REJECTED.value, "rejection_reason": reason, "decided_at": now,
            })
            # Order stays in negotiation; the claim only re-checks that and bumps the version
            self._claim_order(
                order, "rejectQuotation",
                expected=[OrderStatus.IN_NEGOTIATION.value],
                values={"last_message_at": now},
                where=[Order.chat_closed.is_(False)],
            )
            content = "Quotation rejected" + (f": {reason}" if reason else "")
            message = self.log.append_system(
                order.id, "quotation_rejected", content, actor,
                messageId=quotation.message_id, reason=reason,
            )
            self._audit(actor, "QUOTATION_REJECT", order, meta={"message_id": quotation.message_id, "reason": reason})
            self._emit_message(message)
            self._emit(QUOTATION_REJECTED, {
                "orderId": order.id, "messageId": quotation.message_id, "reason": reason,
            }, [order_room(order.id)])
            self._emit_order(order)
        return quotation
