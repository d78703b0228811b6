# edusphere/refunds/service.py
"""
Refund workflow: student request, admin approve/reject.

Approval reverses a completed order in one transaction: the order and its
payment flip to refunded, the wallet is credited, the order's enrollments
are removed, and a refund transaction plus a ledger row are appended.
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, delete, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RefundRequest, RefundTransaction, RefundStatus
from ..courses.models import Enrollment
from ..orders.models import Order, OrderItem, Payment, OrderPaymentStatus, PaymentRecordStatus
from ..wallet.service import WalletService
from ..logging_config import get_logger, log_business_event
from ..error_handlers import (
    AppException,
    AlreadyRefundedException,
    DatabaseException,
    NotFoundException,
    NotPendingException,
    NotRefundableException,
    PendingRefundExistsException,
)

logger = get_logger(__name__)

DEFAULT_APPROVE_NOTE = "Refund approved."
DEFAULT_REJECT_NOTE = "Refund rejected."


class RefundService:
    """Service for the refund request workflow"""

    def __init__(self, db: AsyncSession, currency: str = "USD"):
        self.db = db
        self.currency = currency

    # ========================================================================
    # STUDENT
    # ========================================================================

    async def request_refund(
        self,
        user_id: str,
        order_id: int,
        reason: Optional[str] = None,
    ) -> RefundRequest:
        """
        Open a pending refund request for the full order total

        Raises:
            NotFoundException: order missing or not the user's
            NotRefundableException: order is not paid
            AlreadyRefundedException: order already has refunded money
            PendingRefundExistsException: a pending request already exists
        """
        try:
            result = await self.db.execute(
                select(Order)
                .where(Order.id == order_id, Order.user_id == user_id)
                .with_for_update()
            )
            order = result.scalar_one_or_none()
            if order is None:
                raise NotFoundException("Order", str(order_id))

            if order.payment_status != OrderPaymentStatus.PAID:
                raise NotRefundableException(order.id, order.payment_status.value)
            if Decimal(order.refunded_amount or 0) > 0:
                raise AlreadyRefundedException(order.id)

            pending = await self.db.execute(
                select(RefundRequest.id).where(
                    RefundRequest.order_id == order.id,
                    RefundRequest.status == RefundStatus.PENDING
                )
            )
            if pending.scalar_one_or_none() is not None:
                raise PendingRefundExistsException(order.id)

            payment = await self.db.execute(
                select(Payment.id)
                .where(Payment.order_id == order.id)
                .order_by(desc(Payment.id))
                .limit(1)
            )

            refund_request = RefundRequest(
                order_id=order.id,
                user_id=user_id,
                payment_id=payment.scalar_one_or_none(),
                requested_amount=order.total_amount,
                reason=(reason or "").strip() or None,
                status=RefundStatus.PENDING,
            )
            self.db.add(refund_request)
            await self.db.flush()
            await self.db.commit()

        except IntegrityError:
            # Lost the race against a concurrent request for the same order
            await self.db.rollback()
            raise PendingRefundExistsException(order_id)
        except AppException:
            await self.db.rollback()
            raise

        log_business_event(
            "refund_requested",
            user_id=user_id,
            refund_request_id=refund_request.id,
            order_id=order_id,
            amount=str(refund_request.requested_amount)
        )
        return refund_request

    # ========================================================================
    # ADMIN
    # ========================================================================

    async def _lock_request(self, request_id: int) -> RefundRequest:
        result = await self.db.execute(
            select(RefundRequest)
            .where(RefundRequest.id == request_id)
            .with_for_update()
        )
        refund_request = result.scalar_one_or_none()
        if refund_request is None:
            raise NotFoundException("RefundRequest", str(request_id))
        return refund_request

    async def approve(
        self,
        request_id: int,
        admin_id: str,
        admin_note: Optional[str] = None,
    ) -> RefundRequest:
        """
        Approve a pending request and credit the wallet

        The request is re-read under lock, so a double click or two admins
        approving at once produce exactly one credit; the loser gets
        NotPendingException.
        """
        logger.info(
            "Approving refund request",
            extra={"user_id": admin_id, "extra_data": {"refund_request_id": request_id}}
        )

        try:
            refund_request = await self._lock_request(request_id)
            if refund_request.status != RefundStatus.PENDING:
                raise NotPendingException(request_id, refund_request.status.value)

            result = await self.db.execute(
                select(Order).where(Order.id == refund_request.order_id).with_for_update()
            )
            order = result.scalar_one_or_none()
            if order is None:
                raise DatabaseException(message=f"Order {refund_request.order_id} missing for refund")
            if order.payment_status == OrderPaymentStatus.REFUNDED or Decimal(order.refunded_amount or 0) > 0:
                raise AlreadyRefundedException(order.id)

            payment = await self.db.get(Payment, refund_request.payment_id) if refund_request.payment_id else None
            amount = Decimal(order.total_amount)
            user_id = refund_request.user_id

            self.db.add(RefundTransaction(
                refund_request_id=refund_request.id,
                order_id=order.id,
                payment_id=refund_request.payment_id,
                provider="wallet",
                provider_refund_id=None,
                provider_txn_id=payment.provider_txn_id if payment else None,
                amount=amount,
                currency=self.currency,
                status="completed",
                raw_response={
                    "mode": "wallet_credit",
                    "source_payment_method": (payment.method if payment else None) or "external",
                    "approved_by": admin_id,
                },
            ))

            order.refunded_amount = amount
            order.payment_status = OrderPaymentStatus.REFUNDED
            if payment is not None:
                payment.status = PaymentRecordStatus.REFUNDED

            await WalletService.credit(self.db, user_id, amount)

            course_ids = select(OrderItem.course_id).where(OrderItem.order_id == order.id)
            await self.db.execute(
                delete(Enrollment).where(
                    Enrollment.student_id == user_id,
                    Enrollment.course_id.in_(course_ids)
                )
            )

            await WalletService.record_transaction(
                self.db,
                user_id,
                "wallet_refund_credit",
                amount,
                order_id=order.id,
            )

            refund_request.status = RefundStatus.COMPLETED
            refund_request.admin_note = (admin_note or "").strip() or DEFAULT_APPROVE_NOTE

            await self.db.flush()
            await self.db.commit()

        except NotPendingException:
            await self.db.rollback()
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Refund approval failed: {str(e)}",
                extra={"user_id": admin_id, "extra_data": {"refund_request_id": request_id}},
                exc_info=not isinstance(e, AppException)
            )
            await self._record_failure(request_id, str(e) or "Refund failed.")

            if isinstance(e, AppException):
                raise
            raise DatabaseException(message="Refund approval failed", original_error=e)

        log_business_event(
            "refund_completed",
            user_id=user_id,
            refund_request_id=request_id,
            order_id=order.id,
            amount=str(amount),
            approved_by=admin_id
        )
        return refund_request

    async def _record_failure(self, request_id: int, message: str):
        """Best-effort: mark the request failed in a fresh transaction"""
        try:
            refund_request = await self.db.get(RefundRequest, request_id)
            if refund_request is not None and refund_request.status == RefundStatus.PENDING:
                refund_request.status = RefundStatus.FAILED
                refund_request.admin_note = message[:500]
                await self.db.commit()
        except Exception as record_error:
            await self.db.rollback()
            logger.warning(
                "Failed to record refund failure",
                extra={"extra_data": {"refund_request_id": request_id, "error": str(record_error)}}
            )

    async def reject(self, request_id: int, admin_note: Optional[str] = None) -> RefundRequest:
        """pending -> rejected. No money moves."""
        try:
            refund_request = await self._lock_request(request_id)
            if refund_request.status != RefundStatus.PENDING:
                raise NotPendingException(request_id, refund_request.status.value)

            refund_request.status = RefundStatus.REJECTED
            refund_request.admin_note = (admin_note or "").strip() or DEFAULT_REJECT_NOTE
            await self.db.commit()
        except AppException:
            await self.db.rollback()
            raise

        log_business_event(
            "refund_rejected",
            user_id=refund_request.user_id,
            refund_request_id=request_id,
            order_id=refund_request.order_id
        )
        return refund_request

    # ========================================================================
    # READS
    # ========================================================================

    async def list_for_user(self, user_id: str) -> List[RefundRequest]:
        result = await self.db.execute(
            select(RefundRequest)
            .where(RefundRequest.user_id == user_id)
            .order_by(desc(RefundRequest.created_at), desc(RefundRequest.id))
        )
        return list(result.scalars().all())

    async def list_all(
        self,
        status: Optional[RefundStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[RefundRequest]:
        query = select(RefundRequest)
        if status is not None:
            query = query.where(RefundRequest.status == status)
        result = await self.db.execute(
            query.order_by(desc(RefundRequest.created_at), desc(RefundRequest.id))
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_with_transactions(
        self,
        request_id: int,
        user_id: Optional[str] = None,
    ) -> Tuple[RefundRequest, List[RefundTransaction]]:
        """Admins pass no user_id; students only see their own requests"""
        query = select(RefundRequest).where(RefundRequest.id == request_id)
        if user_id is not None:
            query = query.where(RefundRequest.user_id == user_id)

        result = await self.db.execute(query)
        refund_request = result.scalar_one_or_none()
        if refund_request is None:
            raise NotFoundException("RefundRequest", str(request_id))

        transactions = await self.db.execute(
            select(RefundTransaction)
            .where(RefundTransaction.refund_request_id == request_id)
            .order_by(RefundTransaction.id)
        )
        return refund_request, list(transactions.scalars().all())
