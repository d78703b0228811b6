from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.dependencies import CurrentUser, require_student
from ..database import get_async_db
from ..error_handlers import NotFoundException
from . import schemas
from .service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


async def _cart_response(db: AsyncSession, user_id: str) -> schemas.CartOut:
    lines = await CartService.load_lines(db, user_id)
    owned = await CartService.enrolled_course_ids(db, user_id, [line.course_id for line in lines])
    return schemas.CartOut(
        items=[
            schemas.CartLineOut(
                course_id=line.course_id,
                title=line.title,
                unit_price=line.unit_price,
                quantity=line.quantity,
                owned=line.course_id in owned,
            )
            for line in lines
        ],
        # Owned courses are skipped at checkout
        total=sum((line.line_total for line in lines if line.course_id not in owned), 0),
    )


@router.get("", response_model=schemas.CartOut)
async def get_cart(
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_async_db)
):
    return await _cart_response(db, user.user_id)


@router.post("/items", response_model=schemas.CartOut, status_code=status.HTTP_201_CREATED)
async def add_cart_item(
    body: schemas.CartItemAdd,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_async_db)
):
    await CartService.add_item(db, user.user_id, body.course_id)
    return await _cart_response(db, user.user_id)


@router.delete("/items/{course_id}", response_model=schemas.CartOut)
async def remove_cart_item(
    course_id: int,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_async_db)
):
    removed = await CartService.remove_item(db, user.user_id, course_id)
    if not removed:
        raise NotFoundException("CartItem", str(course_id))
    return await _cart_response(db, user.user_id)
