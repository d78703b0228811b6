import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
import stripe

from edusphere.payments.base import PaymentOutcome, PaymentProvider, ProviderError, to_minor_units
from edusphere.payments.factory import PaymentProviderFactory
from edusphere.payments.providers import paypal_provider
from edusphere.payments.providers.nets_provider import NetsQrProvider, interpret_query
from edusphere.payments.providers.paypal_provider import PayPalProvider
from edusphere.payments.providers.stripe_provider import StripeProvider

PAYPAL_API = "https://paypal.test"
NETS_API = "https://nets.test/nets-qr"


@pytest.fixture(autouse=True)
def clear_token_cache():
    paypal_provider._token_cache.clear()
    yield
    paypal_provider._token_cache.clear()


def paypal(handler):
    return PayPalProvider({
        "client_id": "client",
        "client_secret": "secret",
        "api_base": PAYPAL_API,
        "transport": httpx.MockTransport(handler),
    })


def nets(handler):
    return NetsQrProvider({
        "api_key": "key",
        "project_id": "project",
        "api_base": NETS_API,
        "transport": httpx.MockTransport(handler),
    })


def test_minor_units():
    assert to_minor_units(Decimal("12.34")) == 1234
    assert to_minor_units(Decimal("0.5")) == 50


def test_factory_builds_each_provider():
    assert isinstance(PaymentProviderFactory.create_provider(PaymentProvider.PAYPAL, {}), PayPalProvider)
    assert isinstance(PaymentProviderFactory.create_provider(PaymentProvider.NETS, {}), NetsQrProvider)
    assert isinstance(
        PaymentProviderFactory.create_provider(PaymentProvider.STRIPE, {"secret_key": "sk_test"}),
        StripeProvider
    )
    with pytest.raises(ValueError):
        PaymentProviderFactory.create_provider("bitcoin", {})


# ============================================================================
# PAYPAL
# ============================================================================

class PayPalStub:
    def __init__(self, capture_body=None, order_status=201):
        self.calls = []
        self.capture_body = capture_body or {}
        self.order_status = order_status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        if request.url.path == "/v2/checkout/orders":
            return httpx.Response(self.order_status, json={
                "id": "PP-ORDER-1",
                "status": "CREATED",
                "links": [{"rel": "approve", "href": "https://paypal.test/approve/PP-ORDER-1"}],
            })
        if request.url.path.endswith("/capture"):
            return httpx.Response(201, json=self.capture_body)
        return httpx.Response(404, json={"message": "unknown"})

    def paths(self):
        return [call.url.path for call in self.calls]


async def test_paypal_create_order():
    stub = PayPalStub()
    intent = await paypal(stub).create_intent(Decimal("12.5"), "USD", "intent-1", {"user_id": "user_1"})

    assert intent.provider_ref == "PP-ORDER-1"
    assert intent.checkout_url == "https://paypal.test/approve/PP-ORDER-1"

    order_request = stub.calls[-1]
    assert order_request.headers["authorization"] == "Bearer tok"
    body = json.loads(order_request.content)
    assert body["intent"] == "CAPTURE"
    unit = body["purchase_units"][0]
    assert unit["amount"] == {"currency_code": "USD", "value": "12.50"}
    assert unit["invoice_id"] == "intent-1"
    assert unit["custom_id"] == "user_1"


async def test_paypal_token_is_cached():
    stub = PayPalStub()
    provider = paypal(stub)
    await provider.create_intent(Decimal("1"), "USD", "a")
    await provider.create_intent(Decimal("1"), "USD", "b")

    assert stub.paths().count("/v1/oauth2/token") == 1


async def test_paypal_capture_completed():
    stub = PayPalStub(capture_body={
        "status": "COMPLETED",
        "purchase_units": [{"payments": {"captures": [{"id": "CAP-1", "status": "COMPLETED"}]}}],
    })
    confirmation = await paypal(stub).confirm_or_query("PP-ORDER-1")

    assert confirmation.outcome == PaymentOutcome.SUCCEEDED
    assert confirmation.provider_txn_id == "CAP-1"
    assert stub.paths()[-1] == "/v2/checkout/orders/PP-ORDER-1/capture"


@pytest.mark.parametrize("body, outcome", [
    ({"status": "APPROVED"}, PaymentOutcome.PENDING),
    ({"status": "PAYER_ACTION_REQUIRED"}, PaymentOutcome.PENDING),
    ({"status": "COMPLETED"}, PaymentOutcome.FAILED),
    ({"status": "VOIDED"}, PaymentOutcome.FAILED),
])
async def test_paypal_capture_outcomes(body, outcome):
    confirmation = await paypal(PayPalStub(capture_body=body)).confirm_or_query("PP-ORDER-1")
    assert confirmation.outcome == outcome


async def test_paypal_http_error_raises_provider_error():
    with pytest.raises(ProviderError) as exc_info:
        await paypal(PayPalStub(order_status=500)).create_intent(Decimal("1"), "USD", "a")
    assert exc_info.value.status_code == 500


async def test_paypal_transport_error_raises_provider_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError):
        await paypal(handler).create_intent(Decimal("1"), "USD", "a")


async def test_paypal_requires_credentials():
    provider = PayPalProvider({"api_base": PAYPAL_API, "transport": httpx.MockTransport(PayPalStub())})
    with pytest.raises(ProviderError, match="Missing PayPal configuration"):
        await provider.create_intent(Decimal("1"), "USD", "a")


# ============================================================================
# NETS QR
# ============================================================================

@pytest.mark.parametrize("result, outcome", [
    ({"response_code": "00", "txn_status": 1}, PaymentOutcome.SUCCEEDED),
    ({"response_code": "00", "txn_status": "1"}, PaymentOutcome.SUCCEEDED),
    ({"response_code": "00", "txn_status": 0}, PaymentOutcome.PENDING),
    ({}, PaymentOutcome.PENDING),
    ({"response_code": "09", "txn_status": 0}, PaymentOutcome.FAILED),
    ({"response_code": "00", "txn_status": 2}, PaymentOutcome.FAILED),
    ({"txn_status": 3}, PaymentOutcome.FAILED),
])
def test_nets_status_mapping(result, outcome):
    assert interpret_query(result).outcome == outcome


async def test_nets_request_unwraps_result_data():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"result": {"data": {
            "response_code": "00",
            "txn_retrieval_ref": "NETS-REF-1",
            "qr_code": "base64png",
        }}})

    intent = await nets(handler).create_intent(Decimal("8"), "SGD", "intent-9")

    assert intent.provider_ref == "NETS-REF-1"
    assert intent.qr_code == "base64png"
    assert seen[0].url.path == "/nets-qr/request"
    assert seen[0].headers["api-key"] == "key"
    assert seen[0].headers["project-id"] == "project"
    assert json.loads(seen[0].content)["amt_in_dollars"] == "8.00"


async def test_nets_request_without_reference_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"result": {"data": {"response_code": "68"}}})

    with pytest.raises(ProviderError, match="response_code=68"):
        await nets(handler).create_intent(Decimal("8"), "SGD", "intent-9")


async def test_nets_query_success():
    def handler(request):
        assert json.loads(request.content) == {"txn_retrieval_ref": "NETS-REF-1"}
        return httpx.Response(200, json={"result": {"data": {
            "response_code": "00",
            "txn_status": 1,
            "network_status_txn_id": "NET-TXN-1",
        }}})

    confirmation = await nets(handler).confirm_or_query("NETS-REF-1")
    assert confirmation.outcome == PaymentOutcome.SUCCEEDED
    assert confirmation.provider_txn_id == "NET-TXN-1"


async def test_nets_http_error_raises_provider_error():
    def handler(request):
        return httpx.Response(502, json={"message": "gateway down"})

    with pytest.raises(ProviderError, match="gateway down"):
        await nets(handler).confirm_or_query("NETS-REF-1")


# ============================================================================
# STRIPE
# ============================================================================

@pytest.fixture
def stripe_provider():
    return StripeProvider({
        "secret_key": "sk_test_123",
        "success_url": "https://shop.test/payments/stripe/success?session_id={CHECKOUT_SESSION_ID}",
        "cancel_url": "https://shop.test/payments/stripe/cancel?session_id={CHECKOUT_SESSION_ID}",
    })


async def test_stripe_creates_checkout_session(mocker, stripe_provider):
    create = mocker.patch.object(
        stripe.checkout.Session,
        "create",
        return_value=SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1"),
    )

    intent = await stripe_provider.create_intent(Decimal("12.50"), "SGD", "intent-1", {"user_id": "user_1"})

    assert intent.provider_ref == "cs_test_1"
    assert intent.checkout_url == "https://checkout.stripe.test/cs_test_1"
    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["client_reference_id"] == "intent-1"
    assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 1250
    assert kwargs["line_items"][0]["price_data"]["currency"] == "sgd"
    assert kwargs["metadata"] == {"user_id": "user_1"}


async def test_stripe_rejects_non_positive_amount(stripe_provider):
    with pytest.raises(ProviderError, match="Invalid Stripe amount"):
        await stripe_provider.create_intent(Decimal("0"), "USD", "intent-1")


async def test_stripe_error_becomes_provider_error(mocker, stripe_provider):
    mocker.patch.object(stripe.checkout.Session, "create", side_effect=stripe.StripeError("card network down"))
    with pytest.raises(ProviderError, match="card network down"):
        await stripe_provider.create_intent(Decimal("5"), "USD", "intent-1")


@pytest.mark.parametrize("session, outcome, txn_id", [
    (SimpleNamespace(id="cs_1", payment_status="paid", status="complete", payment_intent="pi_1"),
     PaymentOutcome.SUCCEEDED, "pi_1"),
    (SimpleNamespace(id="cs_1", payment_status="unpaid", status="complete", payment_intent=None),
     PaymentOutcome.SUCCEEDED, "cs_1"),
    (SimpleNamespace(id="cs_1", payment_status="unpaid", status="expired", payment_intent=None),
     PaymentOutcome.FAILED, None),
    (SimpleNamespace(id="cs_1", payment_status="unpaid", status="open", payment_intent=None),
     PaymentOutcome.PENDING, None),
])
async def test_stripe_session_outcomes(mocker, stripe_provider, session, outcome, txn_id):
    retrieve = mocker.patch.object(stripe.checkout.Session, "retrieve", return_value=session)

    confirmation = await stripe_provider.confirm_or_query("cs_1")

    retrieve.assert_called_once_with("cs_1")
    assert confirmation.outcome == outcome
    assert confirmation.provider_txn_id == txn_id
