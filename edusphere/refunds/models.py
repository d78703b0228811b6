import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Numeric, ForeignKey, DateTime, JSON, Index, text,
    Enum as SQLEnum
)
from ..database import Base


class RefundStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


class RefundRequest(Base):
    __tablename__ = "refund_requests"
    __table_args__ = (
        # At most one open request per order. Enum columns store member names.
        Index(
            "uq_refund_requests_pending_order",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)

    requested_amount = Column(Numeric(10, 2), nullable=False)
    reason = Column(String, nullable=True)
    status = Column(
        SQLEnum(RefundStatus, name="refund_status"),
        default=RefundStatus.PENDING,
        nullable=False,
        index=True
    )
    admin_note = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self):
        return f"<RefundRequest {self.id} - order {self.order_id} ({self.status})>"


class RefundTransaction(Base):
    """Append-only record of money returned for a refund request"""
    __tablename__ = "refund_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    refund_request_id = Column(
        Integer, ForeignKey("refund_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)

    provider = Column(String, nullable=False)
    provider_refund_id = Column(String, nullable=True)
    provider_txn_id = Column(String, nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String, nullable=False)
    raw_response = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<RefundTransaction {self.id} - {self.amount} {self.currency}>"
