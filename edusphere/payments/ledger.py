# edusphere/payments/ledger.py
"""
Durable record of payment attempts.

Attempts are keyed by (provider, provider_order_id). Status transitions are
idempotent: only INITIATED rows move, terminal rows are never rewritten.
Callers own the transaction; nothing here commits.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from .base import PaymentProvider, AttemptStatus
from .models import PaymentAttempt
from ..logging_config import get_logger

logger = get_logger(__name__)


class PaymentAttemptLedger:
    """Service for recording payment attempts"""

    @classmethod
    async def record_attempt(
        cls,
        db: AsyncSession,
        *,
        user_id: Optional[str],
        provider: PaymentProvider,
        method: str,
        amount: Optional[Decimal],
        currency: Optional[str],
        ip_address: Optional[str] = None,
        provider_order_id: Optional[str] = None,
        status: AttemptStatus = AttemptStatus.INITIATED,
        failure_reason: Optional[str] = None,
    ) -> PaymentAttempt:
        attempt = PaymentAttempt(
            user_id=user_id,
            provider=provider,
            method=method,
            amount=amount,
            currency=currency,
            ip_address=ip_address,
            provider_order_id=provider_order_id,
            status=status,
            failure_reason=failure_reason,
        )
        db.add(attempt)
        await db.flush()
        return attempt

    @classmethod
    async def set_provider_order_id(
        cls,
        db: AsyncSession,
        attempt: PaymentAttempt,
        provider_order_id: str,
    ) -> PaymentAttempt:
        attempt.provider_order_id = provider_order_id
        await db.flush()
        return attempt

    @classmethod
    async def mark_succeeded(
        cls,
        db: AsyncSession,
        attempt: PaymentAttempt,
        order_id: Optional[int] = None,
    ) -> bool:
        return await cls._transition(db, attempt, AttemptStatus.SUCCEEDED, order_id=order_id)

    @classmethod
    async def mark_failed(
        cls,
        db: AsyncSession,
        attempt: PaymentAttempt,
        reason: Optional[str],
    ) -> bool:
        return await cls._transition(db, attempt, AttemptStatus.FAILED, failure_reason=reason)

    @classmethod
    async def _transition(
        cls,
        db: AsyncSession,
        attempt: PaymentAttempt,
        status: AttemptStatus,
        failure_reason: Optional[str] = None,
        order_id: Optional[int] = None,
    ) -> bool:
        """Returns False (and changes nothing) when the attempt is already terminal"""
        if attempt.status != AttemptStatus.INITIATED:
            logger.info(
                "Attempt already terminal, skipping transition",
                extra={
                    "user_id": attempt.user_id,
                    "extra_data": {
                        "attempt_id": attempt.id,
                        "current_status": attempt.status.value,
                        "requested_status": status.value
                    }
                }
            )
            return False

        attempt.status = status
        if failure_reason is not None:
            attempt.failure_reason = failure_reason[:500]
        if order_id is not None:
            attempt.order_id = order_id
        await db.flush()
        return True

    # ========================================================================
    # VELOCITY COUNTERS
    # ========================================================================

    @classmethod
    async def count_recent_attempts(
        cls,
        db: AsyncSession,
        user_id: Optional[str],
        ip_address: Optional[str],
        window_minutes: int,
    ) -> int:
        return await cls._count_recent(db, user_id, ip_address, window_minutes)

    @classmethod
    async def count_recent_failures(
        cls,
        db: AsyncSession,
        user_id: Optional[str],
        ip_address: Optional[str],
        window_minutes: int,
    ) -> int:
        return await cls._count_recent(
            db, user_id, ip_address, window_minutes, status=AttemptStatus.FAILED
        )

    @classmethod
    async def _count_recent(
        cls,
        db: AsyncSession,
        user_id: Optional[str],
        ip_address: Optional[str],
        window_minutes: int,
        status: Optional[AttemptStatus] = None,
    ) -> int:
        # Attempts from this user OR from this IP
        identity = []
        if user_id:
            identity.append(PaymentAttempt.user_id == user_id)
        if ip_address:
            identity.append(PaymentAttempt.ip_address == ip_address)
        if not identity:
            return 0

        since = datetime.now(timezone.utc) - timedelta(minutes=window_minutes)
        query = (
            select(func.count(PaymentAttempt.id))
            .where(or_(*identity))
            .where(PaymentAttempt.created_at >= since)
        )
        if status is not None:
            query = query.where(PaymentAttempt.status == status)

        result = await db.execute(query)
        return int(result.scalar_one() or 0)
