# edusphere/orders/router.py
"""
Orders API
Endpoints:
- POST /checkout
- GET  /orders
- GET  /orders/{order_id}
- POST /orders/{order_id}/refund-request
"""

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.dependencies import CurrentUser, require_student
from ..cart.service import CartService
from ..config import settings
from ..courses.models import SubscriptionModel
from ..database import get_async_db
from ..error_handlers import CheckoutException, ProRequiredException
from ..logging_config import get_logger
from ..payments.currency import CurrencyConverter
from ..payments.router import get_currency_converter
from ..refunds.schemas import RefundRequestResponse
from ..refunds.service import RefundService
from . import schemas
from .service import CheckoutService

logger = get_logger(__name__)

router = APIRouter(tags=["orders"])


def get_checkout_service(
    db: AsyncSession = Depends(get_async_db),
    converter: CurrencyConverter = Depends(get_currency_converter),
) -> CheckoutService:
    """Dependency for CheckoutService"""
    return CheckoutService(db, converter, intent_ttl_minutes=settings.PAYMENT_INTENT_TTL_MINUTES)


async def _read_checkout_form(request: Request) -> dict:
    """Accepts an HTML form post or a JSON body"""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            # Unparseable body is treated as an empty form
            return {}
        return data if isinstance(data, dict) else {}
    form = await request.form()
    return dict(form)


async def _pro_required_courses(db: AsyncSession, user: CurrentUser) -> list:
    if user.is_pro:
        return []
    lines = await CartService.load_lines(db, user.user_id)
    return [line.course_id for line in lines if line.subscription_model == SubscriptionModel.PRO]


@router.post("/checkout")
async def checkout(
    request: Request,
    user: CurrentUser = Depends(require_student),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    Settle the cart and redirect.

    Success: /orders/{id}?ordered=1
    Rejection: /cart?checkout_error=<code>
    """
    data = await _read_checkout_form(request)

    try:
        pro_courses = await _pro_required_courses(checkout_service.db, user)
        if pro_courses:
            raise ProRequiredException(pro_courses)

        result = await checkout_service.checkout(
            user.user_id,
            data.get("payment_method"),
            payment_intent_id=data.get("payment_intent_id") or None,
        )
    except CheckoutException as e:
        return RedirectResponse(f"/cart?checkout_error={e.code}", status_code=status.HTTP_303_SEE_OTHER)

    return RedirectResponse(f"/orders/{result.order_id}?ordered=1", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/orders", response_model=list[schemas.OrderResponse])
async def list_orders(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(require_student),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    return await checkout_service.list_orders(user.user_id, limit=limit, offset=offset)


@router.get("/orders/{order_id}", response_model=schemas.OrderDetailResponse)
async def get_order(
    order_id: int,
    user: CurrentUser = Depends(require_student),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    order, payment = await checkout_service.get_order(user.user_id, order_id)
    response = schemas.OrderDetailResponse.model_validate(order)
    if payment is not None:
        response.payment = schemas.PaymentRecordResponse.model_validate(payment)
    return response


@router.post(
    "/orders/{order_id}/refund-request",
    response_model=RefundRequestResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_refund_request(
    order_id: int,
    body: schemas.RefundRequestCreate,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_async_db)
):
    """Ask for a full refund of a paid order"""
    refund_service = RefundService(db, currency=settings.DEFAULT_CURRENCY)
    return await refund_service.request_refund(user.user_id, order_id, body.reason)
