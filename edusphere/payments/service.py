# edusphere/payments/service.py
"""
Payment orchestration for external providers:
- Server-side cart pricing and currency conversion
- Fraud screening before any provider call
- Retried provider create/capture/query
- PaymentIntent state (created -> confirmed | failed)
- Attempt ledger transitions and audit logging
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .base import (
    PaymentMethod,
    PaymentOutcome,
    IntentStatus,
    ProviderError,
    ProviderConfirmation,
)
from .currency import CurrencyConverter
from .factory import PaymentProviderFactory
from .fraud import FraudAssessor, PaymentContext
from .ledger import PaymentAttemptLedger
from .models import PaymentAttempt, PaymentIntent
from .retry import with_retries
from ..cart.service import CartService
from ..logging_config import get_logger, log_business_event
from ..error_handlers import (
    ErrorCode,
    ExternalServiceException,
    InvalidPaymentMethodException,
    NotFoundException,
    PaymentBlockedException,
)

logger = get_logger(__name__)

USER_CANCELLED_REASON = "Cancelled by user"


@dataclass
class StartedPayment:
    intent: PaymentIntent
    checkout_url: Optional[str] = None
    qr_code: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


class PaymentService:
    """Service for external payment round trips"""

    def __init__(
        self,
        db: AsyncSession,
        provider_configs: dict,
        fraud_assessor: FraudAssessor,
        converter: CurrencyConverter,
        retries: int = 2,
        retry_base_delay_ms: int = 250,
    ):
        self.db = db
        self.provider_configs = provider_configs
        self.fraud_assessor = fraud_assessor
        self.converter = converter
        self.retries = retries
        self.retry_base_delay_ms = retry_base_delay_ms

    def _provider_for(self, method: PaymentMethod):
        provider = method.provider
        return PaymentProviderFactory.create_provider(provider, self.provider_configs[provider.value])

    @staticmethod
    def _external_method(method) -> PaymentMethod:
        try:
            method = PaymentMethod(method)
        except ValueError:
            raise InvalidPaymentMethodException(str(method))
        if not method.is_external:
            raise InvalidPaymentMethodException(method.value)
        return method

    async def start_payment(
        self,
        user_id: str,
        method,
        ip_address: str,
        currency: Optional[str] = None,
    ) -> StartedPayment:
        """
        Price the cart, screen the attempt and open a payment with the provider

        Raises:
            InvalidPaymentMethodException: method is not an external provider
            EmptyCartException / AlreadyEnrolledException: nothing to pay for
            PaymentBlockedException: fraud rules blocked the attempt
            ExternalServiceException: provider unreachable after retries
        """
        method = self._external_method(method)

        quote = await CartService.quote(self.db, user_id)
        currency = self.converter.normalize(currency)
        amount = self.converter.convert(quote.total, self.converter.default_currency, currency)

        logger.info(
            "Starting external payment",
            extra={
                "user_id": user_id,
                "extra_data": {
                    "method": method.value,
                    "amount": str(amount),
                    "currency": currency,
                    "course_ids": quote.course_ids
                }
            }
        )

        assessment = await self.fraud_assessor.assess(
            self.db,
            user_id,
            ip_address,
            PaymentContext(
                amount=amount,
                provider=method.provider,
                method=method.value,
                currency=currency,
            ),
        )
        # Screening is durable before the provider is contacted
        await self.db.commit()

        if assessment.blocked:
            log_business_event(
                "payment_failed",
                user_id=user_id,
                method=method.value,
                amount=str(amount),
                currency=currency,
                reason="blocked",
                flags=assessment.flags
            )
            raise PaymentBlockedException(assessment.risk_score, assessment.flags)

        attempt = assessment.attempt
        attempt_id = attempt.id if attempt else None
        intent_id = uuid.uuid4()
        provider_client = self._provider_for(method)

        try:
            provider_intent = await with_retries(
                lambda: provider_client.create_intent(
                    amount=amount,
                    currency=currency,
                    reference=str(intent_id),
                    metadata={"user_id": user_id, "intent_id": str(intent_id)},
                ),
                retries=self.retries,
                base_delay_ms=self.retry_base_delay_ms,
                label=f"{method.value} create",
            )
        except ProviderError as e:
            await self._fail_attempt_by_id(attempt_id, str(e))
            await self.db.commit()

            log_business_event(
                "payment_failed",
                user_id=user_id,
                method=method.value,
                amount=str(amount),
                currency=currency,
                reason=str(e)
            )
            raise ExternalServiceException(
                service_name=f"{method.value} Payment Gateway",
                message=f"Failed to create payment: {str(e)}",
                error_code=ErrorCode.PAYMENT_GATEWAY_ERROR
            )

        if attempt is not None:
            await PaymentAttemptLedger.set_provider_order_id(self.db, attempt, provider_intent.provider_ref)

        intent = PaymentIntent(
            id=intent_id,
            user_id=user_id,
            attempt_id=attempt_id,
            method=method.value,
            provider=method.provider,
            provider_ref=provider_intent.provider_ref,
            checkout_url=provider_intent.checkout_url,
            amount=amount,
            currency=currency,
            status=IntentStatus.CREATED,
            risk_action=assessment.action,
        )
        self.db.add(intent)
        await self.db.commit()

        log_business_event(
            "payment_intent_created",
            user_id=user_id,
            intent_id=str(intent.id),
            method=method.value,
            provider_ref=intent.provider_ref,
            amount=str(amount),
            currency=currency,
            risk_action=assessment.action.value
        )

        return StartedPayment(
            intent=intent,
            checkout_url=provider_intent.checkout_url,
            qr_code=provider_intent.qr_code,
            raw=provider_intent.raw,
        )

    async def _get_intent_for_update(
        self,
        user_id: str,
        provider_ref: str,
        method: Optional[PaymentMethod] = None,
    ) -> PaymentIntent:
        query = (
            select(PaymentIntent)
            .where(
                PaymentIntent.provider_ref == provider_ref,
                PaymentIntent.user_id == user_id
            )
            .with_for_update()
        )
        if method is not None:
            query = query.where(PaymentIntent.method == method.value)

        result = await self.db.execute(query)
        intent = result.scalar_one_or_none()
        if intent is None:
            raise NotFoundException("Payment", provider_ref)
        return intent

    async def confirm_payment(
        self,
        user_id: str,
        provider_ref: str,
        method=None,
    ) -> PaymentIntent:
        """
        Capture or query the provider and move the intent accordingly.

        Idempotent: an intent that already left `created` is returned unchanged
        without contacting the provider. A pending outcome changes nothing.
        """
        method = self._external_method(method) if method is not None else None
        intent = await self._get_intent_for_update(user_id, provider_ref, method)

        if intent.status != IntentStatus.CREATED:
            logger.info(
                "Payment already settled, returning existing state (idempotent)",
                extra={
                    "user_id": user_id,
                    "extra_data": {"intent_id": str(intent.id), "status": intent.status.value}
                }
            )
            await self.db.commit()
            return intent

        intent_key = str(intent.id)
        provider_client = self._provider_for(PaymentMethod(intent.method))

        try:
            confirmation = await with_retries(
                lambda: provider_client.confirm_or_query(provider_ref),
                retries=self.retries,
                base_delay_ms=self.retry_base_delay_ms,
                label=f"{intent.method} confirm",
            )
        except ProviderError as e:
            method_name = intent.method
            attempt_id = intent.attempt_id
            await self.db.rollback()
            # Intent stays `created` so the client can confirm again
            await self._fail_attempt_by_id(attempt_id, str(e))
            await self.db.commit()
            logger.error(
                f"Payment confirmation failed: {str(e)}",
                extra={
                    "user_id": user_id,
                    "extra_data": {"intent_id": intent_key, "provider_ref": provider_ref}
                }
            )
            raise ExternalServiceException(
                service_name=f"{method_name} Payment Gateway",
                message=f"Failed to confirm payment: {str(e)}",
                error_code=ErrorCode.PAYMENT_GATEWAY_ERROR
            )

        await self._apply_confirmation(intent, confirmation)
        await self.db.commit()
        return intent

    async def _apply_confirmation(self, intent: PaymentIntent, confirmation: ProviderConfirmation):
        attempt = await self.db.get(PaymentAttempt, intent.attempt_id) if intent.attempt_id else None

        if confirmation.outcome == PaymentOutcome.SUCCEEDED:
            intent.status = IntentStatus.CONFIRMED
            intent.provider_txn_id = confirmation.provider_txn_id
            intent.confirmed_at = datetime.now(timezone.utc)
            if attempt is not None:
                await PaymentAttemptLedger.mark_succeeded(self.db, attempt)

            log_business_event(
                "payment_confirmed",
                user_id=intent.user_id,
                intent_id=str(intent.id),
                method=intent.method,
                provider_txn_id=confirmation.provider_txn_id,
                amount=str(intent.amount),
                currency=intent.currency
            )

        elif confirmation.outcome == PaymentOutcome.FAILED:
            intent.status = IntentStatus.FAILED
            if attempt is not None:
                await PaymentAttemptLedger.mark_failed(self.db, attempt, confirmation.failure_reason)

            log_business_event(
                "payment_failed",
                user_id=intent.user_id,
                intent_id=str(intent.id),
                method=intent.method,
                reason=confirmation.failure_reason
            )

        else:
            logger.info(
                "Payment still pending at provider",
                extra={
                    "user_id": intent.user_id,
                    "extra_data": {"intent_id": str(intent.id), "provider_ref": intent.provider_ref}
                }
            )

        await self.db.flush()

    async def mark_failed(
        self,
        user_id: str,
        provider_ref: str,
        reason: Optional[str] = None,
        method=None,
    ) -> PaymentIntent:
        """Client-side cancel/fail signal. No-op once the intent left `created`."""
        method = self._external_method(method) if method is not None else None
        intent = await self._get_intent_for_update(user_id, provider_ref, method)
        reason = (reason or USER_CANCELLED_REASON)[:500]

        if intent.status == IntentStatus.CREATED:
            intent.status = IntentStatus.FAILED
            await self._fail_attempt_by_id(intent.attempt_id, reason)

            log_business_event(
                "payment_failed",
                user_id=user_id,
                intent_id=str(intent.id),
                method=intent.method,
                reason=reason
            )

        await self.db.commit()
        return intent

    async def _fail_attempt_by_id(self, attempt_id: Optional[int], reason: str):
        if attempt_id is None:
            return
        attempt = await self.db.get(PaymentAttempt, attempt_id)
        if attempt is not None:
            await PaymentAttemptLedger.mark_failed(self.db, attempt, reason)

    async def get_intent(self, user_id: str, intent_id) -> PaymentIntent:
        try:
            intent_id = uuid.UUID(str(intent_id))
        except ValueError:
            raise NotFoundException("Payment", str(intent_id))
        result = await self.db.execute(
            select(PaymentIntent).where(
                PaymentIntent.id == intent_id,
                PaymentIntent.user_id == user_id
            )
        )
        intent = result.scalar_one_or_none()
        if intent is None:
            raise NotFoundException("Payment", str(intent_id))
        return intent
