# edusphere/wallet/service.py
"""
Wallet balance operations.

Every mutation is a read-modify-write on a row read WITH FOR UPDATE, inside
the caller's transaction. Only `top_up`, which owns its whole flow, commits.
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Wallet, LedgerTransaction
from ..logging_config import get_logger, log_business_event
from ..payments.fraud import FraudAssessor, PaymentContext, TOPUP_FLOW
from ..error_handlers import (
    DatabaseException,
    PaymentBlockedException,
    ValidationException,
    WalletBalanceException,
)

logger = get_logger(__name__)

ZERO = Decimal("0.00")
CENTS = Decimal("0.01")

TOPUP_METHOD = "wallet_topup"


class WalletService:
    """Service for wallet balance and ledger operations"""

    @classmethod
    async def get_balance(cls, db: AsyncSession, user_id: str) -> Decimal:
        """A missing wallet reads as 0"""
        result = await db.execute(select(Wallet.balance).where(Wallet.user_id == user_id))
        balance = result.scalar_one_or_none()
        return Decimal(balance) if balance is not None else ZERO

    @classmethod
    async def lock_wallet(cls, db: AsyncSession, user_id: str) -> Optional[Wallet]:
        result = await db.execute(
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    @classmethod
    async def debit(cls, db: AsyncSession, user_id: str, amount: Decimal) -> Decimal:
        """
        Debit the wallet, returning the new balance.

        Raises:
            WalletBalanceException: balance would go negative
        """
        amount = Decimal(amount)
        if amount < 0:
            raise ValidationException("Debit amount must not be negative", details={"amount": str(amount)})

        wallet = await cls.lock_wallet(db, user_id)
        available = Decimal(wallet.balance) if wallet else ZERO

        if available < amount:
            logger.warning(
                "Insufficient wallet balance",
                extra={
                    "user_id": user_id,
                    "extra_data": {"required": str(amount), "available": str(available)}
                }
            )
            raise WalletBalanceException(required=amount, available=available)

        if wallet is None:
            # Only reachable for a zero-amount debit
            return available

        wallet.balance = available - amount
        await db.flush()
        return Decimal(wallet.balance)

    @classmethod
    async def credit(cls, db: AsyncSession, user_id: str, amount: Decimal) -> Decimal:
        """Credit the wallet, creating the row if absent. Returns the new balance."""
        amount = Decimal(amount)
        if amount < 0:
            raise ValidationException("Credit amount must not be negative", details={"amount": str(amount)})

        wallet = await cls.lock_wallet(db, user_id)
        if wallet is None:
            wallet = Wallet(user_id=user_id, balance=amount)
            db.add(wallet)
        else:
            wallet.balance = Decimal(wallet.balance) + amount

        await db.flush()
        return Decimal(wallet.balance)

    @classmethod
    async def record_transaction(
        cls,
        db: AsyncSession,
        user_id: str,
        type: str,
        amount: Decimal,
        order_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> LedgerTransaction:
        """Append a completed ledger row"""
        transaction = LedgerTransaction(
            user_id=user_id,
            type=type,
            amount=amount,
            status="completed",
            order_id=order_id,
            description=description,
        )
        db.add(transaction)
        await db.flush()
        return transaction

    @classmethod
    async def top_up(
        cls,
        db: AsyncSession,
        user_id: str,
        amount: Decimal,
        ip_address: str,
        fraud_assessor: FraudAssessor,
        currency: Optional[str] = None,
    ) -> Decimal:
        """
        Screen and credit a wallet top-up, returning the new balance.

        Commits twice: the screening, then the credit and its `wallet_topup`
        ledger row in one transaction. A blocked top-up keeps its screening
        record.

        Raises:
            ValidationException: amount is not positive
            PaymentBlockedException: screening blocked the top-up
            DatabaseException: the credit could not be written
        """
        amount = Decimal(amount).quantize(CENTS)
        if amount <= 0:
            raise ValidationException("Top-up amount must be positive", details={"amount": str(amount)})

        assessment = await fraud_assessor.assess(
            db,
            user_id,
            ip_address,
            PaymentContext(amount=amount, method=TOPUP_METHOD, currency=currency, flow=TOPUP_FLOW),
        )
        await db.commit()

        if assessment.blocked:
            log_business_event(
                "wallet_topup_blocked",
                user_id=user_id,
                amount=str(amount),
                risk_score=assessment.risk_score,
                flags=assessment.flags,
            )
            raise PaymentBlockedException(assessment.risk_score, assessment.flags)

        try:
            balance = await cls.credit(db, user_id, amount)
            await cls.record_transaction(
                db,
                user_id,
                TOPUP_METHOD,
                amount,
                description=f"Wallet top-up ({currency})" if currency else "Wallet top-up",
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error(
                f"Wallet top-up failed: {str(e)}",
                extra={"user_id": user_id, "extra_data": {"amount": str(amount)}},
                exc_info=True
            )
            raise DatabaseException(message="Wallet top-up failed", original_error=e)

        log_business_event(
            "wallet_topped_up",
            user_id=user_id,
            amount=str(amount),
            balance=str(balance),
            risk_action=assessment.action.value,
            flags=assessment.flags,
        )
        return balance

    @classmethod
    async def get_transaction_history(
        cls,
        db: AsyncSession,
        user_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[LedgerTransaction], int]:
        """Get user's ledger history with pagination"""
        total = await db.execute(
            select(func.count(LedgerTransaction.id)).where(LedgerTransaction.user_id == user_id)
        )
        result = await db.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.user_id == user_id)
            .order_by(desc(LedgerTransaction.created_at), desc(LedgerTransaction.id))
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total.scalar_one() or 0)
