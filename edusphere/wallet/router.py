from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.dependencies import CurrentUser, require_student
from ..config import settings
from ..database import get_async_db
from ..payments.fraud import FraudAssessor
from ..payments.router import get_fraud_assessor, request_ip
from . import schemas
from .service import WalletService

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("", response_model=schemas.WalletOut)
async def get_wallet(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_async_db)
):
    """Current balance and recent ledger rows"""
    balance = await WalletService.get_balance(db, user.user_id)
    transactions, total = await WalletService.get_transaction_history(db, user.user_id, limit, offset)
    return schemas.WalletOut(
        balance=balance,
        currency=settings.DEFAULT_CURRENCY,
        transactions=transactions,
        total_count=total
    )


@router.post("/topup", response_model=schemas.TopUpOut)
async def top_up_wallet(
    body: schemas.TopUpRequest,
    request: Request,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_async_db),
    fraud_assessor: FraudAssessor = Depends(get_fraud_assessor)
):
    """Credit the wallet after top-up screening; 403 when screening blocks it"""
    balance = await WalletService.top_up(
        db,
        user.user_id,
        body.amount,
        request_ip(request),
        fraud_assessor,
        currency=settings.DEFAULT_CURRENCY,
    )
    return schemas.TopUpOut(
        message="Wallet topped up",
        balance=balance,
        currency=settings.DEFAULT_CURRENCY
    )
