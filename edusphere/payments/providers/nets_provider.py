# edusphere/payments/providers/nets_provider.py
import time
from decimal import Decimal
from typing import Dict, Any, Optional

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


class NetsQrProvider(BasePaymentProvider):
    """NETS QR implementation: request a QR code, then poll its status"""

    name = PaymentProvider.NETS

    def _initialize_client(self):
        self.api_key = self.config.get("api_key") or ""
        self.project_id = self.config.get("project_id") or ""
        self.api_base = (self.config.get("api_base") or "").rstrip("/")
        self.timeout = self.config.get("timeout", 15.0)
        self.transport = self.config.get("transport")

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "api-key": self.api_key,
            "project-id": self.project_id,
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key or not self.project_id:
            raise ProviderError("nets", "Missing NETS API configuration")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.api_base}{path}", headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise ProviderError("nets", f"Request to {path} failed: {e}")

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise ProviderError("nets", f"Malformed response from {path}", status_code=response.status_code)
        if response.is_error:
            raise ProviderError(
                "nets",
                data.get("message") or f"NETS QR {path.strip('/')} failed",
                status_code=response.status_code,
            )
        return data

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ProviderIntent:
        data = await self._post("/request", {
            "txn_id": reference or f"edusphere_{int(time.time() * 1000)}",
            "amt_in_dollars": format_amount(amount),
            "notify_mobile": 1,
        })

        result = _result_data(data)
        ref = result.get("txn_retrieval_ref")
        if not ref:
            raise ProviderError(
                "nets",
                f"QR request rejected (response_code={result.get('response_code')})"
            )
        return ProviderIntent(provider_ref=ref, qr_code=result.get("qr_code"), raw=data)

    async def confirm_or_query(self, provider_ref: str) -> ProviderConfirmation:
        data = await self._post("/query", {"txn_retrieval_ref": provider_ref})
        result = _result_data(data)
        return interpret_query(result, raw=data)


def interpret_query(result: Dict[str, Any], raw: Optional[Dict[str, Any]] = None) -> ProviderConfirmation:
    """
    "00" with txn_status 1 -> succeeded
    any other response code, or txn_status > 1 -> failed
    anything else -> pending
    """
    raw = raw if raw is not None else result
    response_code = result.get("response_code")
    response_code = None if response_code is None else str(response_code)

    try:
        txn_status = int(result.get("txn_status"))
    except (TypeError, ValueError):
        txn_status = None

    if response_code == "00" and txn_status == 1:
        return ProviderConfirmation(
            outcome=PaymentOutcome.SUCCEEDED,
            provider_txn_id=result.get("network_status_txn_id") or result.get("txn_retrieval_ref"),
            raw=raw,
        )

    if (response_code is not None and response_code != "00") or (txn_status is not None and txn_status > 1):
        return ProviderConfirmation(
            outcome=PaymentOutcome.FAILED,
            failure_reason=f"NETS response_code={response_code} txn_status={txn_status}",
            raw=raw,
        )

    return ProviderConfirmation(outcome=PaymentOutcome.PENDING, raw=raw)


def _result_data(data: Dict[str, Any]) -> Dict[str, Any]:
    # Sandbox wraps the payload as {"result": {"data": {...}}}
    result = data.get("result")
    if isinstance(result, dict) and isinstance(result.get("data"), dict):
        return result["data"]
    return data
