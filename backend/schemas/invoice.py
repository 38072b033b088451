# schemas/invoice.py
from typing import List, Optional
from datetime import datetime

from models.invoice import InvoiceStatus
from schemas.common import CamelModel
from schemas.order import OrderOut


# Output schema for an invoice line item
class InvoiceItemOut(CamelModel):
    name: str
    quantity: float
    unit: Optional[str] = None
    unit_price: float
    total: float


# Output schema for a vendor invoice
class InvoiceOut(CamelModel):
    id: int
    full_number: str
    order_id: int
    quotation_message_id: int
    vendor_id: int
    project_id: int
    title: str
    status: InvoiceStatus
    currency: str
    subtotal: float
    tax_rate: float
    tax_amount: float
    discount: float
    total_amount: float
    amount_paid: float
    amount_due: float
    due_date: datetime
    notes: Optional[str] = None
    pdf_url: Optional[str] = None
    created_at: datetime
    items: List[InvoiceItemOut]


class InvoicesPage(CamelModel):
    items: List[InvoiceOut]
    total: int
    page: int
    page_size: int


class InvoicePdfOut(CamelModel):
    invoice_id: int
    pdf_url: str


# Response of a successful acceptance
class QuotationAcceptedOut(CamelModel):
    order: OrderOut
    invoice: InvoiceOut
