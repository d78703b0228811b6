from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal

from .models import RefundStatus


class RefundRequestResponse(BaseModel):
    id: int
    order_id: int
    user_id: str
    payment_id: Optional[int] = None
    requested_amount: Decimal
    reason: Optional[str] = None
    status: RefundStatus
    admin_note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RefundTransactionResponse(BaseModel):
    id: int
    provider: str
    provider_refund_id: Optional[str] = None
    provider_txn_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    raw_response: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RefundDetailResponse(BaseModel):
    request: RefundRequestResponse
    transactions: List[RefundTransactionResponse]


class AdminDecision(BaseModel):
    admin_note: Optional[str] = Field(None, max_length=500)
