from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from edusphere.config import FraudConfig
from edusphere.auth.dependencies import CurrentUser, get_current_user
from edusphere.database import get_async_db
from edusphere.main import app
from edusphere.courses.models import SubscriptionModel
from edusphere.orders.models import Order
from edusphere.payments.base import (
    PaymentMethod,
    IntentStatus,
    PaymentOutcome,
    ProviderConfirmation,
    ProviderIntent,
)
from edusphere.payments.factory import PaymentProviderFactory
from edusphere.payments.fraud import FraudAssessor
from edusphere.payments.models import PaymentIntent
from edusphere.payments.router import get_fraud_assessor
from edusphere.users.models import UserRole, SubscriptionTier

STUDENT = CurrentUser(user_id="student_1", role=UserRole.STUDENT)
PRO_STUDENT = CurrentUser(user_id="student_1", role=UserRole.STUDENT, subscription_tier=SubscriptionTier.PRO)
ADMIN = CurrentUser(user_id="admin_1", role=UserRole.ADMIN)


@pytest.fixture
def identity():
    return {"user": STUDENT}


@pytest_asyncio.fixture
async def client(session_factory, identity):
    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = override_db
    app.dependency_overrides[get_current_user] = lambda: identity["user"]

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def student(seed):
    await seed.user("student_1")
    await seed.user("admin_1", role=UserRole.ADMIN)


@pytest.fixture
def fake_provider(mocker):
    fake = mocker.Mock()
    fake.create_intent = mocker.AsyncMock(
        return_value=ProviderIntent(provider_ref="PP-9", checkout_url="https://paypal.test/approve/PP-9")
    )
    fake.confirm_or_query = mocker.AsyncMock(
        return_value=ProviderConfirmation(outcome=PaymentOutcome.SUCCEEDED, provider_txn_id="CAP-9")
    )
    mocker.patch.object(PaymentProviderFactory, "create_provider", return_value=fake)
    return fake


async def test_wallet_checkout_redirects_to_the_order(client, seed, student):
    course = await seed.course(price="50.00")
    await seed.wallet("student_1", "100.00")
    await seed.cart("student_1", course)

    response = await client.post("/checkout", data={"payment_method": "wallet"})

    assert response.status_code == 303
    location = response.headers["location"]
    assert location.startswith("/orders/") and location.endswith("?ordered=1")

    order = await client.get(location.split("?")[0])
    assert order.status_code == 200
    body = order.json()
    assert body["payment_status"] == "paid"
    assert Decimal(body["total_amount"]) == Decimal("50.00")
    assert [item["course_id"] for item in body["items"]] == [course.id]
    assert body["payment"]["method"] == "wallet"
    assert order.headers["cache-control"] == "no-store"


async def test_checkout_rejections_redirect_to_cart(client, seed, student):
    course = await seed.course(price="50.00")
    await seed.wallet("student_1", "20.00")
    await seed.cart("student_1", course)

    response = await client.post("/checkout", data={"payment_method": "wallet"})
    assert response.status_code == 303
    assert response.headers["location"] == "/cart?checkout_error=wallet_balance"

    response = await client.post("/checkout", json={"payment_method": "bitcoin"})
    assert response.headers["location"] == "/cart?checkout_error=invalid_payment_method"

    response = await client.post(
        "/checkout", content=b'{"payment_method": ', headers={"content-type": "application/json"}
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/cart?checkout_error=invalid_payment_method"

    response = await client.post("/checkout", data={"payment_method": "paypal"})
    assert response.headers["location"] == "/cart?checkout_error=payment_required"


async def test_empty_cart_redirect(client, student):
    response = await client.post("/checkout", data={"payment_method": "wallet"})

    assert response.status_code == 303
    assert response.headers["location"] == "/cart?checkout_error=empty_cart"


async def test_pro_course_needs_pro_tier(client, seed, student, identity):
    course = await seed.course(price="10.00", model=SubscriptionModel.PRO)
    await seed.wallet("student_1", "100.00")
    await seed.cart("student_1", course)

    response = await client.post("/checkout", data={"payment_method": "wallet"})
    assert response.headers["location"] == "/cart?checkout_error=pro_required"

    identity["user"] = PRO_STUDENT
    response = await client.post("/checkout", data={"payment_method": "wallet"})
    assert "?ordered=1" in response.headers["location"]


async def test_students_cannot_reach_admin_endpoints(client, student):
    response = await client.get("/admin/refunds")

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ERR_1004"


async def test_cart_endpoints(client, seed, student):
    course = await seed.course(price="12.50", title="Intro")

    added = await client.post("/cart/items", json={"course_id": course.id})
    assert added.status_code == 201
    assert Decimal(added.json()["total"]) == Decimal("12.50")
    assert added.json()["items"][0]["title"] == "Intro"

    removed = await client.delete(f"/cart/items/{course.id}")
    assert removed.status_code == 200
    assert removed.json()["items"] == []

    missing = await client.delete(f"/cart/items/{course.id}")
    assert missing.status_code == 404


async def test_refund_round_trip(client, seed, student, identity):
    course = await seed.course(price="50.00")
    await seed.wallet("student_1", "100.00")
    await seed.cart("student_1", course)
    checkout = await client.post("/checkout", data={"payment_method": "wallet"})
    order_id = int(checkout.headers["location"].split("/")[2].split("?")[0])

    requested = await client.post(f"/orders/{order_id}/refund-request", json={"reason": "changed my mind"})
    assert requested.status_code == 201
    request_id = requested.json()["id"]
    assert requested.json()["status"] == "pending"

    duplicate = await client.post(f"/orders/{order_id}/refund-request", json={})
    assert duplicate.status_code == 409

    identity["user"] = ADMIN
    pending = await client.get("/admin/refunds", params={"status": "pending"})
    assert [r["id"] for r in pending.json()] == [request_id]

    approved = await client.post(f"/admin/refunds/{request_id}/approve", json={})
    assert approved.status_code == 200
    assert approved.json()["status"] == "completed"

    again = await client.post(f"/admin/refunds/{request_id}/approve", json={})
    assert again.status_code == 409

    identity["user"] = STUDENT
    wallet = await client.get("/wallet")
    assert Decimal(wallet.json()["balance"]) == Decimal("100.00")
    assert {t["type"] for t in wallet.json()["transactions"]} == {"wallet_checkout", "wallet_refund_credit"}

    detail = await client.get(f"/refunds/{request_id}")
    assert detail.json()["transactions"][0]["provider"] == "wallet"


async def test_paypal_flow_through_checkout(client, seed, student, fake_provider, session_factory):
    course = await seed.course(price="50.00")
    await seed.cart("student_1", course)

    created = await client.post("/api/paypal/create-order", json={"currency": "usd"})
    assert created.status_code == 200
    body = created.json()
    assert body["id"] == "PP-9"
    assert Decimal(body["amount"]) == Decimal("50.00")

    captured = await client.post("/api/paypal/capture-order", json={"order_id": "PP-9"})
    assert captured.json()["status"] == "confirmed"

    checkout = await client.post(
        "/checkout",
        data={"payment_method": "paypal", "payment_intent_id": body["payment_intent_id"]},
    )
    assert "?ordered=1" in checkout.headers["location"]

    async with session_factory() as fresh:
        intent = (await fresh.execute(select(PaymentIntent))).scalar_one()
        order = (await fresh.execute(select(Order))).scalar_one()
    assert intent.status == IntentStatus.CONSUMED
    assert intent.order_id == order.id


async def test_nets_status_reports_pending(client, seed, student, fake_provider):
    await seed.intent("student_1", "50.00", method=PaymentMethod.NETS, status=IntentStatus.CREATED, provider_ref="NETS-1")
    fake_provider.confirm_or_query.return_value = ProviderConfirmation(outcome=PaymentOutcome.PENDING)

    response = await client.get("/payments/nets/status/NETS-1")

    assert response.status_code == 200
    assert response.json()["status"] == "pending"


async def test_stripe_cancel_marks_intent_failed(client, seed, student, session_factory):
    await seed.intent("student_1", "50.00", method=PaymentMethod.STRIPE, status=IntentStatus.CREATED, provider_ref="cs_1")

    response = await client.get("/payments/stripe/cancel", params={"session_id": "cs_1"})

    assert response.status_code == 303
    assert response.headers["location"] == "/cart?checkout_error=payment_cancelled"
    async with session_factory() as fresh:
        intent = (await fresh.execute(select(PaymentIntent))).scalar_one()
    assert intent.status == IntentStatus.FAILED


async def test_wallet_top_up(client, seed, student):
    await seed.wallet("student_1", "10.00")

    response = await client.post("/wallet/topup", json={"amount": "15.25"})

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["balance"]) == Decimal("25.25")
    assert body["currency"] == "USD"
    assert response.headers["cache-control"] == "no-store"

    wallet = (await client.get("/wallet")).json()
    assert Decimal(wallet["balance"]) == Decimal("25.25")
    assert [t["type"] for t in wallet["transactions"]] == ["wallet_topup"]

    response = await client.post("/wallet/topup", json={"amount": "0"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "ERR_1001"


async def test_blocked_wallet_top_up_is_403(client, student):
    app.dependency_overrides[get_fraud_assessor] = lambda: FraudAssessor(FraudConfig(aml_block_on_suspicious=True))

    response = await client.post("/wallet/topup", json={"amount": "2500.00"})

    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "ERR_3007"
    assert error["details"]["flags"] == ["aml_single_topup_limit"]

    wallet = (await client.get("/wallet")).json()
    assert Decimal(wallet["balance"]) == Decimal("0")
    assert wallet["transactions"] == []


async def test_fraud_summary_for_admins(client, student, identity):
    identity["user"] = ADMIN

    response = await client.get("/admin/fraud/summary", params={"hours": 1})

    assert response.status_code == 200
    assert response.json()["total"] == 0


async def test_health_echoes_request_id(client):
    response = await client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["x-request-id"] == "req-42"
    assert response.headers["x-content-type-options"] == "nosniff"
