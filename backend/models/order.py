import enum
from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Boolean, Text, JSON
from sqlalchemy.orm import relationship
from database import Base
from models import project, users  # noqa: F401  registers relationship targets
from utils.clock import utcnow

# Lifecycle of a purchase order
class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    IN_NEGOTIATION = "in_negotiation"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    PARTIALLY_DELIVERED = "partially_delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

TERMINAL_STATUSES = {OrderStatus.CANCELLED.value, OrderStatus.COMPLETED.value}

# Statuses in which the order carries a negotiated final amount
AGREED_STATUSES = {
    OrderStatus.ACCEPTED.value,
    OrderStatus.IN_PROGRESS.value,
    OrderStatus.PARTIALLY_DELIVERED.value,
    OrderStatus.COMPLETED.value,
}

# Statuses in which the vendor reports delivery progress
DELIVERY_STATUSES = {
    OrderStatus.ACCEPTED.value,
    OrderStatus.IN_PROGRESS.value,
    OrderStatus.PARTIALLY_DELIVERED.value,
}

# Physical fulfillment stages, listed in their forward order
class DeliveryStage(str, enum.Enum):
    NOT_STARTED = "not_started"
    PREPARING = "preparing"
    PACKED = "packed"
    DISPATCHED = "dispatched"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    PARTIALLY_DELIVERED = "partially_delivered"

# Represents a request for materials sent from the buyer side to one vendor
class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, unique=True, nullable=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    status = Column(String(32), nullable=False, default=OrderStatus.DRAFT.value, index=True)
    # Bumped by every state mutation; clients use it to detect missed events
    version = Column(Integer, nullable=False, default=1)
    currency = Column(String(8), nullable=False, default="INR")
    estimated_total = Column(Float, nullable=False, default=0.0)

    # Negotiation outcome
    final_amount = Column(Float, nullable=True)
    chat_closed = Column(Boolean, nullable=False, default=False)
    chat_closed_at = Column(DateTime, nullable=True)
    accepted_message_id = Column(Integer, nullable=True)
    last_message_at = Column(DateTime, nullable=True)

    # Embedded delivery tracking
    delivery_stage = Column(String(32), nullable=False, default=DeliveryStage.NOT_STARTED.value)
    tracking_number = Column(String, nullable=True)
    carrier = Column(String, nullable=True)
    expected_arrival = Column(DateTime, nullable=True)
    delivery_notes = Column(Text, nullable=True)
    delivery_updated_at = Column(DateTime, nullable=True)
    delivery_updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    sent_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    project = relationship("Project")
    vendor = relationship("User", foreign_keys=[vendor_id])

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

# Represents one material line on a purchase order
class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    quantity = Column(Float, nullable=False)
    unit = Column(String, nullable=False)
    estimated_unit_price = Column(Float, nullable=False, default=0.0)
    # Running total confirmed by the buyer side through delivery receipts
    received_quantity = Column(Float, nullable=False, default=0.0, server_default="0")

    order = relationship("Order", back_populates="items")

# Buyer-side record of goods received on site; never moves the order status
class DeliveryReceipt(Base):
    __tablename__ = "delivery_receipts"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    received_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    received_at = Column(DateTime, nullable=False)
    delivered_by = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    # [{"item_id", "name", "quantity"}]
    lines = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)
