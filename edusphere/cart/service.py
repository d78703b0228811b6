# edusphere/cart/service.py
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Set

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Cart, CartItem
from ..courses.models import Course, Enrollment, SubscriptionModel
from ..logging_config import get_logger
from ..error_handlers import (
    NotFoundException,
    ValidationException,
    EmptyCartException,
    AlreadyEnrolledException,
)

logger = get_logger(__name__)


@dataclass
class CartLine:
    course_id: int
    title: str
    unit_price: Decimal
    quantity: int
    stock_qty: Optional[int]
    subscription_model: SubscriptionModel

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def has_limited_stock(self) -> bool:
        return self.stock_qty is not None and self.stock_qty > 0


@dataclass
class CartQuote:
    """Cart lines split into purchasable and already-owned"""
    lines: List[CartLine] = field(default_factory=list)
    owned_course_ids: List[int] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0.00"))

    @property
    def course_ids(self) -> List[int]:
        return [line.course_id for line in self.lines]


class CartService:
    """Per-user cart of course line items"""

    @classmethod
    async def get_or_create_cart(cls, db: AsyncSession, user_id: str) -> Cart:
        result = await db.execute(select(Cart).where(Cart.user_id == user_id))
        cart = result.scalar_one_or_none()
        if cart:
            return cart

        cart = Cart(user_id=user_id)
        db.add(cart)
        await db.flush()
        return cart

    @classmethod
    async def add_item(cls, db: AsyncSession, user_id: str, course_id: int) -> CartItem:
        """Add a course to the cart. Adding the same course twice is a no-op."""
        course = await db.get(Course, course_id)
        if not course or not course.is_active:
            raise NotFoundException("Course", str(course_id))

        if await cls.enrolled_course_ids(db, user_id, [course_id]):
            raise ValidationException(
                "You are already enrolled in this course",
                details={"course_id": course_id}
            )

        cart = await cls.get_or_create_cart(db, user_id)
        result = await db.execute(
            select(CartItem).where(CartItem.cart_id == cart.id, CartItem.course_id == course_id)
        )
        item = result.scalar_one_or_none()
        if item is None:
            # One seat per course
            item = CartItem(cart_id=cart.id, course_id=course_id, quantity=1)
            db.add(item)

        await db.commit()

        logger.info(
            "Course added to cart",
            extra={"user_id": user_id, "extra_data": {"course_id": course_id}}
        )
        return item

    @classmethod
    async def remove_item(cls, db: AsyncSession, user_id: str, course_id: int) -> bool:
        result = await db.execute(select(Cart.id).where(Cart.user_id == user_id))
        cart_id = result.scalar_one_or_none()
        if cart_id is None:
            return False

        result = await db.execute(
            delete(CartItem).where(CartItem.cart_id == cart_id, CartItem.course_id == course_id)
        )
        await db.commit()
        return result.rowcount > 0

    @classmethod
    async def load_lines(cls, db: AsyncSession, user_id: str, lock: bool = False) -> List[CartLine]:
        """Cart items joined with the current course price and stock"""
        query = (
            select(CartItem, Course)
            .join(Cart, Cart.id == CartItem.cart_id)
            .join(Course, Course.id == CartItem.course_id)
            .where(Cart.user_id == user_id)
            .order_by(CartItem.id)
        )
        if lock:
            query = query.with_for_update()

        result = await db.execute(query)
        return [
            CartLine(
                course_id=course.id,
                title=course.title,
                unit_price=Decimal(course.price or 0),
                quantity=item.quantity or 1,
                stock_qty=course.stock_qty,
                subscription_model=course.subscription_model,
            )
            for item, course in result.all()
        ]

    @classmethod
    async def enrolled_course_ids(
        cls, db: AsyncSession, user_id: str, course_ids: List[int]
    ) -> Set[int]:
        if not course_ids:
            return set()
        result = await db.execute(
            select(Enrollment.course_id).where(
                Enrollment.student_id == user_id,
                Enrollment.course_id.in_(course_ids)
            )
        )
        return set(result.scalars().all())

    @classmethod
    async def quote(cls, db: AsyncSession, user_id: str, lock: bool = False) -> CartQuote:
        """
        Purchasable lines and their total, priced server-side.

        Raises:
            EmptyCartException: no items in the cart
            AlreadyEnrolledException: every item is already owned
        """
        lines = await cls.load_lines(db, user_id, lock=lock)
        if not lines:
            raise EmptyCartException()

        owned = await cls.enrolled_course_ids(db, user_id, [line.course_id for line in lines])
        quote = CartQuote(
            lines=[line for line in lines if line.course_id not in owned],
            owned_course_ids=sorted(owned),
        )
        if not quote.lines:
            raise AlreadyEnrolledException()

        return quote

    @classmethod
    async def clear(cls, db: AsyncSession, user_id: str) -> None:
        """Delete all items. Runs inside the caller's transaction."""
        cart_ids = select(Cart.id).where(Cart.user_id == user_id)
        await db.execute(delete(CartItem).where(CartItem.cart_id.in_(cart_ids)))
