# edusphere/orders/service.py
"""
Checkout engine: converts a cart plus a payment into an order.

One database transaction covers the whole write set (order, line items,
enrollments, stock, payment row, wallet debit, ledger row, intent
consumption, cart clear). Any failure rolls all of it back.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
import uuid

from sqlalchemy import select, update, desc
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, OrderItem, Payment, OrderPaymentStatus, OrderStatus, PaymentRecordStatus
from ..cart.service import CartService, CartQuote
from ..courses.models import Course, Enrollment
from ..payments.base import PaymentMethod, IntentStatus
from ..payments.currency import CurrencyConverter
from ..payments.models import PaymentIntent
from ..wallet.service import WalletService
from ..logging_config import get_logger, log_business_event
from ..error_handlers import (
    AppException,
    CheckoutException,
    DatabaseException,
    InvalidPaymentMethodException,
    NotFoundException,
    OutOfStockException,
    PaymentRequiredException,
)

logger = get_logger(__name__)


@dataclass
class CheckoutResult:
    order_id: int
    total: Decimal


class CheckoutService:
    """Service for turning carts into paid orders"""

    def __init__(
        self,
        db: AsyncSession,
        converter: CurrencyConverter,
        intent_ttl_minutes: int = 30,
    ):
        self.db = db
        self.converter = converter
        self.intent_ttl_minutes = intent_ttl_minutes

    @staticmethod
    def parse_method(method) -> PaymentMethod:
        try:
            return PaymentMethod(str(method or "").strip().lower())
        except ValueError:
            raise InvalidPaymentMethodException(str(method))

    async def checkout(
        self,
        user_id: str,
        payment_method,
        payment_intent_id=None,
    ) -> CheckoutResult:
        """
        Settle the user's cart in one transaction.

        Args:
            user_id: Buyer
            payment_method: wallet | paypal | stripe | nets
            payment_intent_id: Confirmed intent for external methods. When
                omitted, the newest confirmed intent for the method is used.

        Returns:
            CheckoutResult with the new order id and the charged total

        Raises:
            CheckoutException subclasses for business rejections
            DatabaseException for unexpected failures
        """
        method = self.parse_method(payment_method)

        logger.info(
            "Checkout started",
            extra={
                "user_id": user_id,
                "extra_data": {
                    "method": method.value,
                    "payment_intent_id": str(payment_intent_id) if payment_intent_id else None
                }
            }
        )

        try:
            # 1-3. Locked cart read, minus courses already owned
            quote = await CartService.quote(self.db, user_id, lock=True)

            # 4. Limited-stock courses need a free seat
            for line in quote.lines:
                if line.has_limited_stock and line.stock_qty < line.quantity:
                    raise OutOfStockException(line.course_id)

            # 5. Server-side total from the prices read under lock
            total = quote.total

            # 6. Funds
            intent = None
            if method == PaymentMethod.WALLET:
                await WalletService.debit(self.db, user_id, total)
            else:
                intent = await self._lock_usable_intent(user_id, method, payment_intent_id, total)

            # 7. Order, items, entitlements, stock
            order = Order(
                user_id=user_id,
                total_amount=total,
                refunded_amount=Decimal("0.00"),
                payment_status=OrderPaymentStatus.PAID,
                order_status=OrderStatus.COMPLETED,
            )
            self.db.add(order)
            await self.db.flush()

            await self._write_items(order, user_id, quote)

            # 8. Originating payment
            self.db.add(Payment(
                order_id=order.id,
                user_id=user_id,
                method=method.value,
                provider_txn_id=intent.provider_txn_id if intent else None,
                amount=total,
                status=PaymentRecordStatus.COMPLETED,
            ))

            # 9. Ledger
            await WalletService.record_transaction(
                self.db,
                user_id,
                f"{method.value}_checkout",
                total,
                order_id=order.id,
            )

            # 10. Single-use intent
            if intent is not None:
                intent.status = IntentStatus.CONSUMED
                intent.order_id = order.id
                intent.consumed_at = datetime.now(timezone.utc)

            # 11. Empty the cart
            await CartService.clear(self.db, user_id)

            order_id = order.id
            await self.db.commit()

        except AppException as e:
            await self.db.rollback()
            if isinstance(e, CheckoutException):
                logger.info(
                    f"Checkout rejected: {e.code}",
                    extra={
                        "user_id": user_id,
                        "extra_data": {"method": method.value, "code": e.code}
                    }
                )
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Checkout failed: {str(e)}",
                extra={
                    "user_id": user_id,
                    "extra_data": {"method": method.value}
                },
                exc_info=True
            )
            raise DatabaseException(
                message="Checkout failed",
                original_error=e
            )

        log_business_event(
            "checkout_completed",
            user_id=user_id,
            order_id=order_id,
            total=str(total),
            method=method.value,
            course_ids=quote.course_ids,
            skipped_owned=quote.owned_course_ids
        )

        return CheckoutResult(order_id=order_id, total=total)

    async def _lock_usable_intent(
        self,
        user_id: str,
        method: PaymentMethod,
        payment_intent_id,
        total: Decimal,
    ) -> PaymentIntent:
        """
        Lock the intent backing an external checkout and validate it:
        owned by the user, same method, confirmed, inside the TTL, and for
        exactly the cart total in the intent's currency.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=self.intent_ttl_minutes)
        fresh = (PaymentIntent.confirmed_at >= cutoff).label("fresh")

        query = (
            select(PaymentIntent, fresh)
            .where(PaymentIntent.user_id == user_id)
            .with_for_update(of=PaymentIntent)
        )
        if payment_intent_id:
            try:
                intent_uuid = uuid.UUID(str(payment_intent_id))
            except ValueError:
                raise PaymentRequiredException("unknown payment")
            query = query.where(PaymentIntent.id == intent_uuid)
        else:
            query = (
                query.where(
                    PaymentIntent.method == method.value,
                    PaymentIntent.status == IntentStatus.CONFIRMED
                )
                .order_by(desc(PaymentIntent.confirmed_at))
                .limit(1)
            )

        row = (await self.db.execute(query)).first()
        if row is None:
            raise PaymentRequiredException("no confirmed payment")

        intent, is_fresh = row
        if intent.method != method.value:
            raise PaymentRequiredException("payment method mismatch")
        if intent.status != IntentStatus.CONFIRMED:
            raise PaymentRequiredException(f"payment is {intent.status.value}")
        if not is_fresh:
            raise PaymentRequiredException("payment confirmation expired")

        expected = self.converter.convert(total, self.converter.default_currency, intent.currency)
        if Decimal(intent.amount) != expected:
            logger.warning(
                "Payment amount does not match cart total",
                extra={
                    "user_id": user_id,
                    "extra_data": {
                        "intent_id": str(intent.id),
                        "intent_amount": str(intent.amount),
                        "intent_currency": intent.currency,
                        "expected_amount": str(expected)
                    }
                }
            )
            raise PaymentRequiredException("payment amount mismatch")

        return intent

    async def _write_items(self, order: Order, user_id: str, quote: CartQuote):
        for line in quote.lines:
            self.db.add(OrderItem(
                order_id=order.id,
                course_id=line.course_id,
                unit_price=line.unit_price,
                quantity=line.quantity,
            ))

            # Existence-guarded so a concurrent enrollment is not duplicated
            existing = await self.db.execute(
                select(Enrollment.id).where(
                    Enrollment.course_id == line.course_id,
                    Enrollment.student_id == user_id
                )
            )
            if existing.scalar_one_or_none() is None:
                self.db.add(Enrollment(course_id=line.course_id, student_id=user_id, progress=0))

            if line.has_limited_stock:
                # Floored at zero; unlimited stock is left alone
                result = await self.db.execute(
                    update(Course)
                    .where(Course.id == line.course_id, Course.stock_qty >= line.quantity)
                    .values(stock_qty=Course.stock_qty - line.quantity)
                )
                if result.rowcount == 0:
                    raise OutOfStockException(line.course_id)

        await self.db.flush()

    # ========================================================================
    # READS
    # ========================================================================

    async def list_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(desc(Order.created_at), desc(Order.id))
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_order(self, user_id: str, order_id: int) -> Tuple[Order, Optional[Payment]]:
        result = await self.db.execute(
            select(Order).where(Order.id == order_id, Order.user_id == user_id)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundException("Order", str(order_id))

        payment = await self.db.execute(
            select(Payment).where(Payment.order_id == order.id).order_by(desc(Payment.id)).limit(1)
        )
        return order, payment.scalar_one_or_none()
