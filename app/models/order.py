"""
Order model for database operations
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Float, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base

# Fulfillment lifecycle
PENDING = "pending"
APPROVED = "approved"
DENIED = "denied"
SAMPLE_COLLECTED = "sample_collected"
PROCESSING = "processing"
REPORT_SUBMITTED = "report_submitted"
COMPLETED = "completed"
CANCELLED = "cancelled"

ORDER_STATUSES = [
    PENDING, APPROVED, DENIED, SAMPLE_COLLECTED,
    PROCESSING, REPORT_SUBMITTED, COMPLETED, CANCELLED,
]
TERMINAL_STATUSES = {DENIED, CANCELLED, COMPLETED}

# Statuses that hold an appointment slot
ACTIVE_STATUSES = [PENDING, APPROVED, SAMPLE_COLLECTED, PROCESSING, REPORT_SUBMITTED]

PAYMENT_METHODS = ["COD", "Online", "Wallet"]
PAYMENT_STATUSES = ["Pending", "Paid", "Failed", "Refunded"]


def normalize_status(value: str) -> str:
    """Accept 'Sample Collected', 'sample-collected' and 'sample_collected' alike"""
    return "_".join(value.strip().lower().replace("-", " ").split())


ACTIVE_SLOT_INDEX = "uq_orders_active_slot"
_active_clause = "status IN ({})".format(", ".join(f"'{s}'" for s in ACTIVE_STATUSES))


class Order(Base):
    """Order entity model"""
    __tablename__ = "orders"
    __table_args__ = (
        # At most one active order per (date, window, area)
        Index(
            ACTIVE_SLOT_INDEX,
            "appointment_date", "appointment_window", "service_area",
            unique=True,
            sqlite_where=text(_active_clause),
            postgresql_where=text(_active_clause),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, index=True, nullable=False)

    # Patient
    patient_name = Column(String(100), nullable=False)
    patient_email = Column(String(100), index=True, nullable=True)
    patient_phone = Column(String(20), nullable=True)
    patient_dob = Column(String(20), nullable=True)
    patient_age = Column(Integer, nullable=True)
    patient_gender = Column(String(20), nullable=True)
    relation = Column(String(50), default="self", nullable=False)
    member_id = Column(String(64), index=True, nullable=True)
    owner_user_id = Column(String(64), index=True, nullable=False)
    owner_email = Column(String(100), index=True, nullable=True)
    address = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    pincode = Column(String(20), nullable=True)

    # Appointment
    appointment_date = Column(String(10), nullable=False)
    appointment_window = Column(String(20), nullable=False)
    service_area = Column(String(20), nullable=False)

    # Pricing, frozen at checkout
    subtotal = Column(Float, nullable=False)
    home_collection_charge = Column(Float, default=0, nullable=False)
    total_price = Column(Float, nullable=False)
    payment_method = Column(String(20), default="COD", nullable=False)
    payment_status = Column(String(20), default="Pending", nullable=False)

    status = Column(String(30), default=PENDING, index=True, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    technician_notes = Column(Text, nullable=True)
    report_url = Column(String(500), nullable=True)
    report_filename = Column(String(255), nullable=True)
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    denied_by = Column(String(64), nullable=True)
    denied_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def __repr__(self):
        return f"<Order(id={self.id}, order_number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """Line item copied from the cart and catalog at checkout"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    test_id = Column(Integer, nullable=False)
    test_name = Column(String(200), nullable=False)
    lab = Column(String(200), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem(order_id={self.order_id}, test_name='{self.test_name}', price={self.price})>"
