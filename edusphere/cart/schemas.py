from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field


class CartItemAdd(BaseModel):
    course_id: int = Field(..., gt=0)


class CartLineOut(BaseModel):
    course_id: int
    title: str
    unit_price: Decimal
    quantity: int
    owned: bool = False


class CartOut(BaseModel):
    items: List[CartLineOut]
    total: Decimal
