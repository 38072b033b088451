# backend/services/invoicing.py
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from config import settings
from models.invoice import Invoice, InvoiceItem, InvoiceStatus
from models.message import Quotation
from models.order import Order
from models.project import Project
from models.users import User
from services.base import OrderService
from services.errors import DuplicateInvoice, NotAuthorized, NotFound, ValidationError
from utils.clock import utcnow
from utils.pdf import pdf_filename, render_invoice_pdf

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceTerms:
    tax_rate: float
    discount: float
    due_days: int
    notes: Optional[str] = None

    # Request values win; anything left out comes from configuration
    @classmethod
    def resolve(cls, tax_rate=None, discount=None, due_days=None, notes=None) -> "InvoiceTerms":
        return cls(
            tax_rate=settings.INVOICE_TAX_RATE if tax_rate is None else tax_rate,
            discount=settings.INVOICE_DISCOUNT if discount is None else discount,
            due_days=settings.INVOICE_DUE_DAYS if due_days is None else due_days,
            notes=notes,
        )


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: float
    tax_amount: float
    discount: float
    total_amount: float


# Pure invoice arithmetic over the accepted amount
def derive_invoice_totals(subtotal: float, tax_rate: float, discount: float) -> InvoiceTotals:
    if not all(math.isfinite(v) for v in (subtotal, tax_rate, discount)):
        raise ValidationError("Invoice figures must be finite numbers")
    if subtotal <= 0:
        raise ValidationError("Invoice subtotal must be positive", subtotal=subtotal)
    if tax_rate < 0 or discount < 0:
        raise ValidationError("Tax rate and discount must not be negative", taxRate=tax_rate, discount=discount)
    subtotal = round(subtotal, 2)
    tax_amount = round(subtotal * tax_rate / 100, 2)
    if discount > subtotal + tax_amount:
        raise ValidationError("Discount exceeds the invoice amount", discount=discount)
    total = round(subtotal + tax_amount - discount, 2)
    return InvoiceTotals(subtotal=subtotal, tax_amount=tax_amount, discount=round(discount, 2), total_amount=total)


# True when the driver reports the one-invoice-per-order constraint
def is_order_id_conflict(exc: IntegrityError) -> bool:
    text = str(exc.orig).lower()
    return "unique" in text and "order_id" in text


class InvoiceGenerator(OrderService):
    """Derives the one invoice an order ever gets from its accepted quotation."""

    def generate(self, order: Order, quotation: Quotation, terms: InvoiceTerms, actor: User = None) -> Invoice:
        # Runs inside the caller's acceptance transaction
        order_id = order.id
        existing = self.db.query(Invoice.id).filter(Invoice.order_id == order_id).first()
        if existing is not None:
            raise DuplicateInvoice("An invoice already exists for this order", orderId=order_id, invoiceId=existing[0])

        totals = derive_invoice_totals(quotation.amount, terms.tax_rate, terms.discount)
        now = utcnow()
        next_number = (self.db.query(func.max(Invoice.number)).scalar() or 0) + 1

        invoice = Invoice(
            number=next_number,
            order_id=order_id,
            quotation_message_id=quotation.message_id,
            vendor_id=order.vendor_id,
            project_id=order.project_id,
            title=order.title,
            status=InvoiceStatus.PENDING,
            currency=quotation.currency,
            subtotal=totals.subtotal,
            tax_rate=terms.tax_rate,
            tax_amount=totals.tax_amount,
            discount=totals.discount,
            total_amount=totals.total_amount,
            amount_paid=0.0,
            amount_due=totals.total_amount,
            due_date=now + timedelta(days=terms.due_days),
            notes=terms.notes,
            created_by=actor.id if actor else None,
            created_at=now,
        )
        for it in quotation.items or []:
            invoice.items.append(InvoiceItem(
                name=it["name"],
                quantity=it["quantity"],
                unit=it.get("unit"),
                unit_price=it["unit_price"],
                total=it["total"],
            ))
        self.db.add(invoice)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            if not is_order_id_conflict(exc):
                raise
            # A concurrent acceptance already issued one
            raise DuplicateInvoice("An invoice already exists for this order", orderId=order_id) from exc
        logger.info("Generated invoice %s for order %s (total %.2f %s)",
                    invoice.full_number, order.id, invoice.total_amount, invoice.currency)
        return invoice

    def _visible(self, actor: User):
        query = self.db.query(Invoice).options(selectinload(Invoice.items))
        if actor.is_admin:
            return query
        if actor.is_vendor:
            return query.filter(Invoice.vendor_id == actor.id)
        return query.join(Project, Project.id == Invoice.project_id).filter(Project.client_id == actor.id)

    def list_invoices(self, actor: User, *, status: str = None, order_id: int = None, page: int = 1, page_size: int = 20):
        query = self._visible(actor)
        if status:
            try:
                query = query.filter(Invoice.status == InvoiceStatus(status))
            except ValueError:
                raise ValidationError(f"Unknown invoice status: {status}")
        if order_id is not None:
            query = query.filter(Invoice.order_id == order_id)
        total = query.count()
        items = query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
        return items, total

    def get_invoice(self, actor: User, invoice_id: int) -> Invoice:
        invoice = self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFound("Invoice not found", invoiceId=invoice_id)
        if invoice.order is None or not self._can_view(actor, invoice):
            raise NotAuthorized("Not allowed to view this invoice", invoiceId=invoice_id)
        return invoice

    def _can_view(self, actor: User, invoice: Invoice) -> bool:
        if actor.is_admin:
            return True
        if actor.is_vendor:
            return invoice.vendor_id == actor.id
        project = self.db.get(Project, invoice.project_id)
        return project is not None and project.client_id == actor.id

    # Render the PDF, store it and record its URL on the invoice
    def render_pdf(self, actor: User, invoice_id: int, store) -> Invoice:
        invoice = self.get_invoice(actor, invoice_id)
        if not (actor.is_admin or (actor.is_vendor and actor.id == invoice.vendor_id)):
            raise NotAuthorized("Only an admin or the invoicing vendor may render the PDF", invoiceId=invoice_id)
        vendor = self.db.get(User, invoice.vendor_id)
        project = self.db.get(Project, invoice.project_id)
        data = render_invoice_pdf(invoice, vendor=vendor, project=project, order=invoice.order)
        url = store.upload(data, "invoices", pdf_filename(invoice))
        with self.transaction():
            invoice.pdf_url = url
            self._audit(actor, "INVOICE_PDF", invoice.order, meta={"invoice_id": invoice.id, "pdf_url": url}, resource="invoices")
        return invoice
