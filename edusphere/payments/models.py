# edusphere/payments/models.py
from sqlalchemy import Column, String, Integer, Numeric, DateTime, JSON, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from datetime import datetime, timezone
import uuid
from ..database import Base
from .base import PaymentProvider, AttemptStatus, IntentStatus, RiskAction, Severity


class PaymentAttempt(Base):
    """Every payment attempt, including ones blocked before reaching a provider"""
    __tablename__ = "payment_attempts"
    __table_args__ = (
        Index("ix_payment_attempts_user_created", "user_id", "created_at"),
        Index("ix_payment_attempts_ip_created", "ip_address", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=True)
    order_id = Column(Integer, nullable=True)

    # Provider details
    provider = Column(SQLEnum(PaymentProvider, name="payment_provider"), nullable=False)
    method = Column(String, nullable=False)
    provider_order_id = Column(String, index=True)

    # Amount details
    amount = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=True)

    # Status tracking. Only INITIATED rows move; terminal rows are frozen.
    status = Column(
        SQLEnum(AttemptStatus, name="payment_attempt_status"),
        default=AttemptStatus.INITIATED,
        nullable=False,
        index=True
    )
    failure_reason = Column(String, nullable=True)
    ip_address = Column(String(45), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self):
        return f"<PaymentAttempt {self.id} - {self.provider} {self.status}>"


class FraudEvent(Base):
    """One row per risk assessment. Write-once."""
    __tablename__ = "fraud_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=True, index=True)
    payment_id = Column(Integer, ForeignKey("payment_attempts.id", ondelete="SET NULL"), nullable=True)
    rule_code = Column(String, nullable=False)
    severity = Column(SQLEnum(Severity, name="fraud_severity"), nullable=False)
    details = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    def __repr__(self):
        return f"<FraudEvent {self.id} - {self.rule_code} ({self.severity})>"


class PaymentIntent(Base):
    """
    Server-side record of an external payment.

    created -> confirmed -> consumed, or created -> failed.
    Checkout only accepts a confirmed intent inside its TTL, once.
    """
    __tablename__ = "payment_intents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    attempt_id = Column(Integer, ForeignKey("payment_attempts.id", ondelete="SET NULL"), nullable=True)

    method = Column(String, nullable=False)
    provider = Column(SQLEnum(PaymentProvider, name="payment_provider"), nullable=False)
    provider_ref = Column(String, unique=True, index=True, nullable=False)
    provider_txn_id = Column(String, nullable=True)
    checkout_url = Column(String, nullable=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(
        SQLEnum(IntentStatus, name="payment_intent_status"),
        default=IntentStatus.CREATED,
        nullable=False,
        index=True
    )
    risk_action = Column(SQLEnum(RiskAction, name="risk_action"), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    confirmed_at = Column(DateTime(timezone=True))
    consumed_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<PaymentIntent {self.id} - {self.provider} {self.status}>"
