import enum
from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, JSON, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base
from utils.clock import utcnow

# Kinds of entries in an order's negotiation log
class MessageType(str, enum.Enum):
    TEXT = "text"
    QUOTATION = "quotation"
    INVOICE = "invoice"
    DELIVERY = "delivery"
    SYSTEM = "system"

class QuotationStatus(str, enum.Enum):
    PENDING = "pending"
    NEGOTIATED = "negotiated"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"

# One immutable entry in the append-only negotiation log of an order
class NegotiationMessage(Base):
    __tablename__ = "negotiation_messages"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    # Null for entries written by the state machine itself
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    sender_role = Column(String(20), nullable=False)
    message_type = Column(String(20), nullable=False, index=True)
    content = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    system_event = Column(String(40), nullable=True)
    client_ref = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    quotation = relationship("Quotation", back_populates="message", uselist=False, foreign_keys="Quotation.message_id")

# Vendor's priced proposal, attached to a quotation-type message; only its status mutates
class Quotation(Base):
    __tablename__ = "quotations"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("negotiation_messages.id"), nullable=False, unique=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(8), nullable=False)
    note = Column(Text, nullable=True)
    # [{"name", "quantity", "unit", "unit_price", "total"}]
    items = Column(JSON, nullable=False, default=list)
    valid_until = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default=QuotationStatus.PENDING.value, index=True)
    in_response_to_id = Column(Integer, ForeignKey("negotiation_messages.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    decided_at = Column(DateTime, nullable=True)

    message = relationship("NegotiationMessage", back_populates="quotation", foreign_keys=[message_id])

# Per-user read receipt; kept apart so messages stay immutable
class MessageRead(Base):
    __tablename__ = "message_reads"
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uq_message_read"),)

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("negotiation_messages.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    read_at = Column(DateTime, nullable=False, default=utcnow)
