# edusphere/payments/schemas.py
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from .base import IntentStatus, Severity


class StartPaymentRequest(BaseModel):
    """Request to start an external payment for the current cart"""
    currency: Optional[str] = Field(None, description="ISO currency code, defaults to the store currency")


class PayPalCreateOrderResponse(BaseModel):
    id: str = Field(..., description="PayPal order id")
    payment_intent_id: UUID
    amount: Decimal
    currency: str
    approve_url: Optional[str] = None


class CaptureOrderRequest(BaseModel):
    order_id: str = Field(..., min_length=1, description="PayPal order id")


class PaymentStatusResponse(BaseModel):
    status: str
    payment_intent_id: UUID


class StripeSessionResponse(BaseModel):
    id: str = Field(..., description="Stripe checkout session id")
    url: Optional[str] = None
    payment_intent_id: UUID
    amount: Decimal
    currency: str


class NetsRequestResponse(BaseModel):
    txn_retrieval_ref: str
    qr_code: Optional[str] = None
    payment_intent_id: UUID
    amount: Decimal
    currency: str


class NetsStatusResponse(BaseModel):
    """success | fail | pending"""
    status: str
    payment_intent_id: UUID


class MarkFailedRequest(BaseModel):
    provider_ref: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class PaymentIntentResponse(BaseModel):
    id: UUID
    method: str
    provider_ref: str
    amount: Decimal
    currency: str
    status: IntentStatus
    order_id: Optional[int] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FraudSummaryResponse(BaseModel):
    hours: int
    total: int
    low: int
    medium: int
    high: int


class FraudEventResponse(BaseModel):
    id: int
    user_id: Optional[str] = None
    payment_id: Optional[int] = None
    rule_code: str
    severity: Severity
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FraudEventListResponse(BaseModel):
    events: List[FraudEventResponse]
