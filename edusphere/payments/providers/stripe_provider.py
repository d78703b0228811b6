# edusphere/payments/providers/stripe_provider.py
import stripe
from decimal import Decimal
from typing import Dict, Any, Optional

from ..base import (
    BasePaymentProvider,
    PaymentProvider,
    PaymentOutcome,
    ProviderConfirmation,
    ProviderError,
    ProviderIntent,
    to_minor_units,
)


class StripeProvider(BasePaymentProvider):
    """Stripe hosted Checkout Session implementation"""

    name = PaymentProvider.STRIPE

    def _initialize_client(self):
        stripe.api_key = self.config.get("secret_key") or ""
        self.success_url = self.config.get("success_url")
        self.cancel_url = self.config.get("cancel_url")

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ProviderIntent:
        """
        Create a one-off payment session

        Stripe expects unit_amount in cents (100 cents = 1 USD)
        """
        if not stripe.api_key:
            raise ProviderError("stripe", "Stripe is not configured")
        if amount is None or Decimal(amount) <= 0:
            raise ProviderError("stripe", "Invalid Stripe amount")

        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": currency.lower(),  # Stripe requires lowercase
                        "unit_amount": to_minor_units(amount),
                        "product_data": {"name": "Course checkout"},
                    },
                    "quantity": 1,
                }],
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                client_reference_id=reference,
                metadata={k: str(v) for k, v in (metadata or {}).items()},
            )
        except stripe.StripeError as e:
            raise ProviderError("stripe", f"Checkout session creation failed: {str(e)}")

        return ProviderIntent(provider_ref=session.id, checkout_url=session.url, raw=_as_dict(session))

    async def confirm_or_query(self, provider_ref: str) -> ProviderConfirmation:
        """Read the session back; paid or complete counts as succeeded"""
        try:
            session = stripe.checkout.Session.retrieve(provider_ref)
        except stripe.StripeError as e:
            raise ProviderError("stripe", f"Failed to fetch checkout session: {str(e)}")

        payment_status = getattr(session, "payment_status", None)
        status = getattr(session, "status", None)

        if payment_status == "paid" or status == "complete":
            txn_id = getattr(session, "payment_intent", None) or getattr(session, "id", None)
            if not isinstance(txn_id, str) and txn_id is not None:
                txn_id = getattr(txn_id, "id", None)
            return ProviderConfirmation(
                outcome=PaymentOutcome.SUCCEEDED,
                provider_txn_id=txn_id,
                raw=_as_dict(session),
            )

        if status == "expired":
            return ProviderConfirmation(
                outcome=PaymentOutcome.FAILED,
                failure_reason="Stripe checkout session expired",
                raw=_as_dict(session),
            )

        return ProviderConfirmation(outcome=PaymentOutcome.PENDING, raw=_as_dict(session))


def _as_dict(obj) -> Dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, dict):
        return dict(obj)
    return dict(vars(obj))
