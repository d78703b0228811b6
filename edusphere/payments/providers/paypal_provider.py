# edusphere/payments/providers/paypal_provider.py
import time
from decimal import Decimal
from typing import Dict, Any, Optional, Tuple

import httpx

from ..base import (
    BasePaymentProvider,
    PaymentProvider,
    PaymentOutcome,
    ProviderConfirmation,
    ProviderError,
    ProviderIntent,
    format_amount,
)
from ...logging_config import get_logger

logger = get_logger(__name__)

# (api_base, client_id) -> (access_token, expires_at monotonic seconds)
_token_cache: Dict[Tuple[str, str], Tuple[str, float]] = {}

TOKEN_EXPIRY_MARGIN_SECONDS = 60


class PayPalProvider(BasePaymentProvider):
    """PayPal Orders v2 implementation (CAPTURE intent)"""

    name = PaymentProvider.PAYPAL

    def _initialize_client(self):
        self.client_id = self.config.get("client_id") or ""
        self.client_secret = self.config.get("client_secret") or ""
        self.api_base = (self.config.get("api_base") or "").rstrip("/")
        self.timeout = self.config.get("timeout", 15.0)
        self.transport = self.config.get("transport")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.api_base, timeout=self.timeout, transport=self.transport)

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        if not self.client_id or not self.client_secret or not self.api_base:
            raise ProviderError("paypal", "Missing PayPal configuration")

        cache_key = (self.api_base, self.client_id)
        cached = _token_cache.get(cache_key)
        if cached and time.monotonic() < cached[1]:
            return cached[0]

        try:
            response = await client.post(
                "/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            raise ProviderError("paypal", f"Token request failed: {e}")

        data = _json_or_empty(response)
        token = data.get("access_token")
        if response.is_error or not token:
            raise ProviderError(
                "paypal",
                data.get("error_description") or "Unable to get PayPal token",
                status_code=response.status_code,
            )

        expires_in = _as_float(data.get("expires_in"), 3600)
        _token_cache[cache_key] = (token, time.monotonic() + expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        return token

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ProviderIntent:
        async with self._client() as client:
            token = await self._get_access_token(client)
            purchase_unit = {
                "amount": {"currency_code": currency, "value": format_amount(amount)},
                "invoice_id": reference,
            }
            if metadata and metadata.get("user_id"):
                purchase_unit["custom_id"] = str(metadata["user_id"])

            try:
                response = await client.post(
                    "/v2/checkout/orders",
                    headers={"Authorization": f"Bearer {token}"},
                    json={"intent": "CAPTURE", "purchase_units": [purchase_unit]},
                )
            except httpx.HTTPError as e:
                raise ProviderError("paypal", f"Create order failed: {e}")

        data = _json_or_empty(response)
        if response.is_error:
            raise ProviderError(
                "paypal",
                data.get("message") or "Failed to create PayPal order",
                status_code=response.status_code,
            )
        if not data.get("id"):
            raise ProviderError("paypal", "Order response missing id")

        approve_url = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None
        )
        return ProviderIntent(provider_ref=data["id"], checkout_url=approve_url, raw=data)

    async def confirm_or_query(self, provider_ref: str) -> ProviderConfirmation:
        """Capture the order. Only COMPLETED with a capture id counts as paid."""
        async with self._client() as client:
            token = await self._get_access_token(client)
            try:
                response = await client.post(
                    f"/v2/checkout/orders/{provider_ref}/capture",
                    headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                )
            except httpx.HTTPError as e:
                raise ProviderError("paypal", f"Capture failed: {e}")

        data = _json_or_empty(response)
        if response.is_error:
            raise ProviderError(
                "paypal",
                data.get("message") or "Failed to capture PayPal order",
                status_code=response.status_code,
            )

        status = str(data.get("status") or "").upper()
        txn_id = _capture_id(data)

        if status == "COMPLETED" and txn_id:
            return ProviderConfirmation(outcome=PaymentOutcome.SUCCEEDED, provider_txn_id=txn_id, raw=data)

        if status in ("CREATED", "SAVED", "APPROVED", "PAYER_ACTION_REQUIRED"):
            return ProviderConfirmation(outcome=PaymentOutcome.PENDING, raw=data)

        return ProviderConfirmation(
            outcome=PaymentOutcome.FAILED,
            failure_reason=f"PayPal capture status {status or 'UNKNOWN'}",
            raw=data,
        )


def _capture_id(data: Dict[str, Any]) -> Optional[str]:
    for unit in data.get("purchase_units") or []:
        payments = unit.get("payments") or {}
        for key in ("captures", "authorizations"):
            for entry in payments.get(key) or []:
                if entry.get("id"):
                    return entry["id"]
    return None


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _as_float(value, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
