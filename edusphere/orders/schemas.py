from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from .models import OrderPaymentStatus, OrderStatus, PaymentRecordStatus


class OrderItemResponse(BaseModel):
    course_id: int
    unit_price: Decimal
    quantity: int

    class Config:
        from_attributes = True


class PaymentRecordResponse(BaseModel):
    id: int
    method: str
    provider_txn_id: Optional[str] = None
    amount: Decimal
    status: PaymentRecordStatus

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    total_amount: Decimal
    refunded_amount: Decimal
    payment_status: OrderPaymentStatus
    order_status: OrderStatus
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class OrderDetailResponse(OrderResponse):
    payment: Optional[PaymentRecordResponse] = None


class RefundRequestCreate(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
