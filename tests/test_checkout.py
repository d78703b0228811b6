from decimal import Decimal

import pytest
from sqlalchemy import select

from edusphere.cart.models import CartItem
from edusphere.courses.models import Course, Enrollment
from edusphere.error_handlers import (
    AlreadyEnrolledException,
    EmptyCartException,
    InvalidPaymentMethodException,
    OutOfStockException,
    PaymentRequiredException,
    WalletBalanceException,
)
from edusphere.orders.models import Order, OrderItem, OrderPaymentStatus, Payment
from edusphere.orders.service import CheckoutService
from edusphere.payments.base import IntentStatus, PaymentMethod
from edusphere.payments.models import PaymentIntent
from edusphere.wallet.models import LedgerTransaction
from edusphere.wallet.service import WalletService

USER = "student_1"


@pytest.fixture
def checkout_service(db, converter):
    return CheckoutService(db, converter, intent_ttl_minutes=30)


async def count(db, model, *criteria):
    result = await db.execute(select(model).where(*criteria))
    return len(result.scalars().all())


async def cart_size(db):
    return await count(db, CartItem)


async def order_items(db, order_id):
    result = await db.execute(select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id))
    return result.scalars().all()


# ============================================================================
# WALLET
# ============================================================================

async def test_wallet_checkout_settles_the_cart(db, seed, checkout_service):
    await seed.user(USER)
    course = await seed.course(price="50.00")
    await seed.wallet(USER, "100.00")
    await seed.cart(USER, course)

    result = await checkout_service.checkout(USER, "wallet")

    assert result.total == Decimal("50.00")
    assert await WalletService.get_balance(db, USER) == Decimal("50.00")

    order = await db.get(Order, result.order_id)
    assert order.total_amount == Decimal("50.00")
    assert order.refunded_amount == Decimal("0")
    assert order.payment_status == OrderPaymentStatus.PAID
    items = await order_items(db, order.id)
    assert [(item.course_id, item.unit_price) for item in items] == [(course.id, Decimal("50.00"))]
    assert sum(item.line_total for item in items) == order.total_amount

    assert await count(db, Enrollment, Enrollment.student_id == USER, Enrollment.course_id == course.id) == 1
    assert await cart_size(db) == 0

    payment = (await db.execute(select(Payment).where(Payment.order_id == order.id))).scalar_one()
    assert payment.method == "wallet"
    assert payment.amount == Decimal("50.00")

    ledger = (await db.execute(select(LedgerTransaction))).scalar_one()
    assert (ledger.type, ledger.amount, ledger.order_id) == ("wallet_checkout", Decimal("50.00"), order.id)


async def test_insufficient_wallet_changes_nothing(db, seed, checkout_service):
    await seed.user(USER)
    course = await seed.course(price="50.00")
    await seed.wallet(USER, "20.00")
    await seed.cart(USER, course)

    with pytest.raises(WalletBalanceException) as exc_info:
        await checkout_service.checkout(USER, "wallet")

    assert exc_info.value.code == "wallet_balance"
    assert exc_info.value.details["deficit"] == "30.00"
    assert await WalletService.get_balance(db, USER) == Decimal("20.00")
    assert await count(db, Order) == 0
    assert await cart_size(db) == 1


async def test_missing_wallet_reads_as_zero(db, seed, checkout_service):
    await seed.user(USER)
    await seed.cart(USER, await seed.course(price="1.00"))

    with pytest.raises(WalletBalanceException):
        await checkout_service.checkout(USER, "wallet")


async def test_only_owned_courses_is_rejected(db, seed, checkout_service):
    await seed.user(USER)
    course = await seed.course(price="50.00")
    await seed.wallet(USER, "100.00")
    await seed.enroll(USER, course)
    await seed.cart(USER, course)

    with pytest.raises(AlreadyEnrolledException):
        await checkout_service.checkout(USER, "wallet")

    assert await WalletService.get_balance(db, USER) == Decimal("100.00")
    assert await count(db, Order) == 0
    assert await cart_size(db) == 1


async def test_owned_courses_are_skipped_in_a_mixed_cart(db, seed, checkout_service):
    await seed.user(USER)
    owned = await seed.course(price="30.00", title="Owned")
    new = await seed.course(price="20.00", title="New")
    await seed.wallet(USER, "100.00")
    await seed.enroll(USER, owned)
    await seed.cart(USER, owned, new)

    result = await checkout_service.checkout(USER, "wallet")

    assert result.total == Decimal("20.00")
    assert [item.course_id for item in await order_items(db, result.order_id)] == [new.id]
    assert await count(db, Enrollment, Enrollment.student_id == USER) == 2
    assert await cart_size(db) == 0


async def test_second_checkout_finds_an_empty_cart(db, seed, checkout_service):
    await seed.user(USER)
    await seed.wallet(USER, "100.00")
    await seed.cart(USER, await seed.course(price="50.00"))

    await checkout_service.checkout(USER, "wallet")
    with pytest.raises(EmptyCartException):
        await checkout_service.checkout(USER, "wallet")

    assert await count(db, Order) == 1
    assert await WalletService.get_balance(db, USER) == Decimal("50.00")


async def test_unknown_method_is_rejected(seed, checkout_service):
    await seed.user(USER)
    with pytest.raises(InvalidPaymentMethodException):
        await checkout_service.checkout(USER, "bitcoin")
    with pytest.raises(InvalidPaymentMethodException):
        await checkout_service.checkout(USER, None)


# ============================================================================
# STOCK
# ============================================================================

async def test_limited_stock_is_decremented(db, seed, checkout_service):
    await seed.user(USER)
    course = await seed.course(price="10.00", stock_qty=5)
    await seed.wallet(USER, "10.00")
    await seed.cart(USER, course)

    await checkout_service.checkout(USER, "wallet")

    stock = await db.execute(select(Course.stock_qty).where(Course.id == course.id))
    assert stock.scalar_one() == 4


async def test_unlimited_stock_is_left_alone(db, seed, checkout_service):
    await seed.user(USER)
    course = await seed.course(price="10.00", stock_qty=0)
    await seed.wallet(USER, "10.00")
    await seed.cart(USER, course)

    await checkout_service.checkout(USER, "wallet")

    stock = await db.execute(select(Course.stock_qty).where(Course.id == course.id))
    assert stock.scalar_one() == 0


async def test_not_enough_seats_is_out_of_stock(db, seed, checkout_service):
    await seed.user(USER)
    course = await seed.course(price="10.00", stock_qty=1)
    await seed.wallet(USER, "100.00")
    cart = await seed.cart(USER)
    db.add(CartItem(cart_id=cart.id, course_id=course.id, quantity=2))
    await db.commit()

    with pytest.raises(OutOfStockException) as exc_info:
        await checkout_service.checkout(USER, "wallet")

    assert exc_info.value.details["course_id"] == course.id
    assert await WalletService.get_balance(db, USER) == Decimal("100.00")
    assert await count(db, Order) == 0


# ============================================================================
# EXTERNAL PAYMENTS
# ============================================================================

async def test_confirmed_intent_is_consumed(db, seed, checkout_service):
    await seed.user(USER)
    await seed.cart(USER, await seed.course(price="50.00"))
    intent = await seed.intent(USER, "50.00", method=PaymentMethod.PAYPAL)

    result = await checkout_service.checkout(USER, "paypal", payment_intent_id=str(intent.id))

    refreshed = await db.get(PaymentIntent, intent.id)
    assert refreshed.status == IntentStatus.CONSUMED
    assert refreshed.order_id == result.order_id
    assert refreshed.consumed_at is not None

    payment = (await db.execute(select(Payment).where(Payment.order_id == result.order_id))).scalar_one()
    assert (payment.method, payment.provider_txn_id) == ("paypal", "txn_123")

    ledger = (await db.execute(select(LedgerTransaction))).scalar_one()
    assert ledger.type == "paypal_checkout"


async def test_newest_confirmed_intent_is_used_when_none_is_named(db, seed, checkout_service):
    await seed.user(USER)
    await seed.cart(USER, await seed.course(price="50.00"))
    await seed.intent(USER, "50.00", method=PaymentMethod.NETS, currency="USD", confirmed_minutes_ago=5)

    result = await checkout_service.checkout(USER, "nets")
    assert result.total == Decimal("50.00")


async def test_intent_in_another_currency_must_match_converted_total(db, seed, checkout_service):
    await seed.user(USER)
    await seed.cart(USER, await seed.course(price="50.00"))
    intent = await seed.intent(USER, "67.50", method=PaymentMethod.STRIPE, currency="SGD")

    result = await checkout_service.checkout(USER, "stripe", payment_intent_id=str(intent.id))
    assert result.total == Decimal("50.00")


@pytest.mark.parametrize("intent_kwargs, checkout_method, reason", [
    ({"amount": "40.00"}, "paypal", "payment amount mismatch"),
    ({"amount": "50.00", "confirmed_minutes_ago": 31}, "paypal", "payment confirmation expired"),
    ({"amount": "50.00", "method": PaymentMethod.STRIPE}, "paypal", "payment method mismatch"),
    ({"amount": "50.00", "status": IntentStatus.CREATED}, "paypal", "payment is created"),
    ({"amount": "50.00", "status": IntentStatus.FAILED}, "paypal", "payment is failed"),
])
async def test_unusable_intent_requires_payment(db, seed, checkout_service, intent_kwargs, checkout_method, reason):
    await seed.user(USER)
    await seed.cart(USER, await seed.course(price="50.00"))
    intent = await seed.intent(USER, **intent_kwargs)

    with pytest.raises(PaymentRequiredException) as exc_info:
        await checkout_service.checkout(USER, checkout_method, payment_intent_id=str(intent.id))

    assert exc_info.value.details["reason"] == reason
    assert await count(db, Order) == 0
    assert await cart_size(db) == 1


async def test_intent_cannot_be_spent_twice(db, seed, checkout_service):
    await seed.user(USER)
    first = await seed.course(price="50.00", title="First")
    second = await seed.course(price="50.00", title="Second")
    await seed.cart(USER, first)
    intent = await seed.intent(USER, "50.00")

    await checkout_service.checkout(USER, "paypal", payment_intent_id=str(intent.id))

    await seed.cart(USER, second)
    with pytest.raises(PaymentRequiredException) as exc_info:
        await checkout_service.checkout(USER, "paypal", payment_intent_id=str(intent.id))

    assert exc_info.value.details["reason"] == "payment is consumed"
    assert await count(db, Order) == 1


async def test_other_users_intent_is_not_found(seed, checkout_service):
    await seed.user(USER)
    await seed.user("student_2")
    await seed.cart(USER, await seed.course(price="50.00"))
    intent = await seed.intent("student_2", "50.00")

    with pytest.raises(PaymentRequiredException) as exc_info:
        await checkout_service.checkout(USER, "paypal", payment_intent_id=str(intent.id))
    assert exc_info.value.details["reason"] == "no confirmed payment"


async def test_malformed_intent_id(seed, checkout_service):
    await seed.user(USER)
    await seed.cart(USER, await seed.course(price="50.00"))

    with pytest.raises(PaymentRequiredException) as exc_info:
        await checkout_service.checkout(USER, "paypal", payment_intent_id="not-a-uuid")
    assert exc_info.value.details["reason"] == "unknown payment"


async def test_read_back_orders(db, seed, checkout_service):
    await seed.user(USER)
    await seed.wallet(USER, "100.00")
    await seed.cart(USER, await seed.course(price="25.00"))
    result = await checkout_service.checkout(USER, "wallet")

    orders = await checkout_service.list_orders(USER)
    assert [order.id for order in orders] == [result.order_id]

    order, payment = await checkout_service.get_order(USER, result.order_id)
    assert order.id == result.order_id
    assert payment.method == "wallet"
