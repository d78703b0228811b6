from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class LedgerTransactionOut(BaseModel):
    id: int
    type: str
    amount: Decimal
    status: str
    order_id: Optional[int] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WalletOut(BaseModel):
    balance: Decimal
    currency: str
    transactions: List[LedgerTransactionOut]
    total_count: int


class TopUpRequest(BaseModel):
    """Amount in the wallet currency"""
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)


class TopUpOut(BaseModel):
    message: str
    balance: Decimal
    currency: str
