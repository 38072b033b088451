from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum, Text
from sqlalchemy.orm import relationship
from database import Base
from utils.clock import utcnow
import enum

# Enum for vendor invoice states
class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

# Represents the vendor invoice derived from an accepted quotation
class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    number = Column(Integer, index=True, nullable=False)
    # One invoice per order, enforced by the storage layer too
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    quotation_message_id = Column(Integer, ForeignKey("negotiation_messages.id"), nullable=False)
    vendor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(Enum(InvoiceStatus), default=InvoiceStatus.PENDING, nullable=False)

    currency = Column(String(8), nullable=False)
    subtotal = Column(Float, nullable=False)
    tax_rate = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    discount = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False)
    amount_paid = Column(Float, nullable=False, default=0.0)
    amount_due = Column(Float, nullable=False)
    due_date = Column(DateTime, nullable=False)
    notes = Column(Text, nullable=True)

    # Blob store URL of the rendered PDF
    pdf_url = Column(String, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, nullable=False, default=utcnow)

    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceItem.id")
    order = relationship("Order")

    # Formatted invoice number string
    @property
    def full_number(self):
        num = self.number if self.number else self.id
        return f"INV-{num:05d}"

# Represents a line item copied from the accepted quotation
class InvoiceItem(Base):
    __tablename__ = "invoice_items"
    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False)
    name = Column(String, nullable=False)
    quantity = Column(Float, nullable=False)
    unit = Column(String, nullable=True)
    unit_price = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    invoice = relationship("Invoice", back_populates="items")
