# edusphere/payments/router.py
"""
Provider round trips. Every flow ends in a PaymentIntent that checkout
consumes; nothing here creates orders.

- POST /api/paypal/create-order, /api/paypal/capture-order
- POST /api/stripe/create-checkout-session
- GET  /payments/stripe/success, /payments/stripe/cancel
- POST /payments/nets/request
- GET  /payments/nets/status/{ref}, /payments/nets/success, /payments/nets/fail
- POST /api/payments/mark-failed
- GET  /admin/fraud/summary, /admin/fraud/events
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.dependencies import CurrentUser, require_student, require_admin
from ..config import settings, FraudConfig, CurrencyConfig
from ..database import get_async_db
from .base import PaymentMethod, IntentStatus
from .currency import CurrencyConverter
from .fraud import FraudAssessor, client_ip
from .service import PaymentService
from . import schemas

router = APIRouter(tags=["payments"])
admin_router = APIRouter(prefix="/admin/fraud", tags=["admin"])


def get_currency_converter() -> CurrencyConverter:
    return CurrencyConverter(CurrencyConfig.from_settings(settings))


def get_fraud_assessor() -> FraudAssessor:
    return FraudAssessor(FraudConfig.from_settings(settings))


def get_provider_configs() -> dict:
    timeout = settings.PROVIDER_TIMEOUT_SECONDS
    return {
        "paypal": {
            "client_id": settings.PAYPAL_CLIENT_ID,
            "client_secret": settings.PAYPAL_CLIENT_SECRET,
            "api_base": settings.PAYPAL_API,
            "timeout": timeout,
        },
        "stripe": {
            "secret_key": settings.STRIPE_SECRET_KEY,
            "success_url": settings.STRIPE_SUCCESS_URL,
            "cancel_url": settings.STRIPE_CANCEL_URL,
        },
        "nets": {
            "api_key": settings.NETS_API_KEY,
            "project_id": settings.NETS_PROJECT_ID,
            "api_base": settings.NETS_API_URL,
            "timeout": timeout,
        },
    }


def get_payment_service(
    db: AsyncSession = Depends(get_async_db),
    converter: CurrencyConverter = Depends(get_currency_converter),
    fraud_assessor: FraudAssessor = Depends(get_fraud_assessor),
    provider_configs: dict = Depends(get_provider_configs),
) -> PaymentService:
    """Dependency for PaymentService"""
    return PaymentService(
        db,
        provider_configs,
        fraud_assessor=fraud_assessor,
        converter=converter,
        retries=settings.PROVIDER_RETRIES,
        retry_base_delay_ms=settings.PROVIDER_RETRY_BASE_DELAY_MS,
    )


def request_ip(request: Request) -> str:
    peer = request.client.host if request.client else None
    return client_ip(request.headers.get("x-forwarded-for"), peer)


def _poll_status(status: IntentStatus) -> str:
    if status in (IntentStatus.CONFIRMED, IntentStatus.CONSUMED):
        return "success"
    if status == IntentStatus.FAILED:
        return "fail"
    return "pending"


# ============================================================================
# PAYPAL
# ============================================================================

@router.post("/api/paypal/create-order", response_model=schemas.PayPalCreateOrderResponse)
async def paypal_create_order(
    request: Request,
    body: Optional[schemas.StartPaymentRequest] = None,
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Create a PayPal order for the current cart total"""
    started = await payment_service.start_payment(
        user.user_id,
        PaymentMethod.PAYPAL,
        request_ip(request),
        currency=body.currency if body else None,
    )
    return schemas.PayPalCreateOrderResponse(
        id=started.intent.provider_ref,
        payment_intent_id=started.intent.id,
        amount=started.intent.amount,
        currency=started.intent.currency,
        approve_url=started.checkout_url,
    )


@router.post("/api/paypal/capture-order", response_model=schemas.PaymentStatusResponse)
async def paypal_capture_order(
    body: schemas.CaptureOrderRequest,
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Capture an approved PayPal order. Safe to call more than once."""
    intent = await payment_service.confirm_payment(user.user_id, body.order_id, method=PaymentMethod.PAYPAL)
    return schemas.PaymentStatusResponse(status=intent.status.value, payment_intent_id=intent.id)


# ============================================================================
# STRIPE
# ============================================================================

@router.post("/api/stripe/create-checkout-session", response_model=schemas.StripeSessionResponse)
async def stripe_create_checkout_session(
    request: Request,
    body: Optional[schemas.StartPaymentRequest] = None,
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    started = await payment_service.start_payment(
        user.user_id,
        PaymentMethod.STRIPE,
        request_ip(request),
        currency=body.currency if body else None,
    )
    return schemas.StripeSessionResponse(
        id=started.intent.provider_ref,
        url=started.checkout_url,
        payment_intent_id=started.intent.id,
        amount=started.intent.amount,
        currency=started.intent.currency,
    )


@router.get("/payments/stripe/success")
async def stripe_success(
    session_id: str = Query(..., min_length=1),
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Stripe redirect target; reads the session back before trusting it"""
    intent = await payment_service.confirm_payment(user.user_id, session_id, method=PaymentMethod.STRIPE)
    if intent.status in (IntentStatus.CONFIRMED, IntentStatus.CONSUMED):
        return RedirectResponse("/cart?payment=stripe_confirmed", status_code=303)
    return RedirectResponse("/cart?checkout_error=payment_failed", status_code=303)


@router.get("/payments/stripe/cancel")
async def stripe_cancel(
    session_id: str = Query(..., min_length=1),
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    await payment_service.mark_failed(
        user.user_id, session_id, reason="Stripe checkout cancelled", method=PaymentMethod.STRIPE
    )
    return RedirectResponse("/cart?checkout_error=payment_cancelled", status_code=303)


# ============================================================================
# NETS QR
# ============================================================================

@router.post("/payments/nets/request", response_model=schemas.NetsRequestResponse)
async def nets_request(
    request: Request,
    body: Optional[schemas.StartPaymentRequest] = None,
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Generate a NETS QR code for the current cart total"""
    started = await payment_service.start_payment(
        user.user_id,
        PaymentMethod.NETS,
        request_ip(request),
        currency=body.currency if body else None,
    )
    return schemas.NetsRequestResponse(
        txn_retrieval_ref=started.intent.provider_ref,
        qr_code=started.qr_code,
        payment_intent_id=started.intent.id,
        amount=started.intent.amount,
        currency=started.intent.currency,
    )


@router.get("/payments/nets/status/{ref}", response_model=schemas.NetsStatusResponse)
async def nets_status(
    ref: str,
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Polled by the QR page until success or fail"""
    intent = await payment_service.confirm_payment(user.user_id, ref, method=PaymentMethod.NETS)
    return schemas.NetsStatusResponse(status=_poll_status(intent.status), payment_intent_id=intent.id)


@router.get("/payments/nets/success")
async def nets_success(
    ref: str = Query(..., min_length=1),
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    intent = await payment_service.confirm_payment(user.user_id, ref, method=PaymentMethod.NETS)
    if _poll_status(intent.status) == "success":
        return RedirectResponse("/cart?payment=nets_confirmed", status_code=303)
    return RedirectResponse("/cart?checkout_error=payment_failed", status_code=303)


@router.get("/payments/nets/fail")
async def nets_fail(
    ref: str = Query(..., min_length=1),
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    await payment_service.mark_failed(user.user_id, ref, reason="NETS payment failed", method=PaymentMethod.NETS)
    return RedirectResponse("/cart?checkout_error=payment_failed", status_code=303)


# ============================================================================
# GENERIC
# ============================================================================

@router.post("/api/payments/mark-failed", response_model=schemas.PaymentStatusResponse)
async def mark_payment_failed(
    body: schemas.MarkFailedRequest,
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Client reports a cancelled or failed provider flow"""
    intent = await payment_service.mark_failed(user.user_id, body.provider_ref, reason=body.reason)
    return schemas.PaymentStatusResponse(status=intent.status.value, payment_intent_id=intent.id)


@router.get("/api/payments/intents/{intent_id}", response_model=schemas.PaymentIntentResponse)
async def get_payment_intent(
    intent_id: str,
    user: CurrentUser = Depends(require_student),
    payment_service: PaymentService = Depends(get_payment_service)
):
    return await payment_service.get_intent(user.user_id, intent_id)


# ============================================================================
# ADMIN: FRAUD REPORTING
# ============================================================================

@admin_router.get("/summary", response_model=schemas.FraudSummaryResponse)
async def fraud_summary(
    hours: int = Query(24),
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db)
):
    return await FraudAssessor.summary(db, hours=hours)


@admin_router.get("/events", response_model=schemas.FraudEventListResponse)
async def fraud_events(
    limit: int = Query(30),
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db)
):
    events = await FraudAssessor.recent(db, limit=limit)
    return schemas.FraudEventListResponse(events=events)
