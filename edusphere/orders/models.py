import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Numeric, ForeignKey, DateTime, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from ..database import Base


class OrderPaymentStatus(str, enum.Enum):
    PAID = "paid"
    REFUNDED = "refunded"


class OrderStatus(str, enum.Enum):
    COMPLETED = "completed"


class PaymentRecordStatus(str, enum.Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)

    total_amount = Column(Numeric(10, 2), nullable=False)
    refunded_amount = Column(Numeric(10, 2), nullable=False, default=0)

    payment_status = Column(
        SQLEnum(OrderPaymentStatus, name="order_payment_status"),
        default=OrderPaymentStatus.PAID,
        nullable=False
    )
    order_status = Column(
        SQLEnum(OrderStatus, name="order_status"),
        default=OrderStatus.COMPLETED,
        nullable=False
    )
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    items = relationship("OrderItem", back_populates="order", lazy="selectin", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Order {self.id} - {self.total_amount} ({self.payment_status})>"


class OrderItem(Base):
    """Line item. Price and quantity are frozen at checkout."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self):
        return self.unit_price * self.quantity


class Payment(Base):
    """The payment that settled an order, flipped to refunded on refund approval"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)

    method = Column(String, nullable=False)
    provider_txn_id = Column(String, nullable=True, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(
        SQLEnum(PaymentRecordStatus, name="payment_record_status"),
        default=PaymentRecordStatus.COMPLETED,
        nullable=False
    )
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<Payment {self.id} - order {self.order_id} ({self.status})>"
