from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Numeric, ForeignKey, DateTime, Index, CheckConstraint
from ..database import Base


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    balance = Column(Numeric(10, 2), nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self):
        return f"<Wallet {self.user_id} - {self.balance}>"


class LedgerTransaction(Base):
    """Append-only money movement log. Rows are never updated."""
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)

    # <method>_checkout, wallet_refund_credit
    type = Column(String, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String, nullable=False, default="completed")

    order_id = Column(Integer, nullable=True, index=True)
    description = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<LedgerTransaction {self.type} {self.amount}>"
