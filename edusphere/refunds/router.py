# edusphere/refunds/router.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.dependencies import CurrentUser, require_student, require_admin
from ..config import settings
from ..database import get_async_db
from . import schemas
from .models import RefundStatus
from .service import RefundService

router = APIRouter(prefix="/refunds", tags=["refunds"])
admin_router = APIRouter(prefix="/admin/refunds", tags=["admin"])


def get_refund_service(db: AsyncSession = Depends(get_async_db)) -> RefundService:
    """Dependency for RefundService"""
    return RefundService(db, currency=settings.DEFAULT_CURRENCY)


def _detail(refund_request, transactions) -> schemas.RefundDetailResponse:
    return schemas.RefundDetailResponse(
        request=schemas.RefundRequestResponse.model_validate(refund_request),
        transactions=[schemas.RefundTransactionResponse.model_validate(t) for t in transactions],
    )


# ============================================================================
# STUDENT
# ============================================================================

@router.get("", response_model=list[schemas.RefundRequestResponse])
async def list_my_refunds(
    user: CurrentUser = Depends(require_student),
    refund_service: RefundService = Depends(get_refund_service)
):
    return await refund_service.list_for_user(user.user_id)


@router.get("/{request_id}", response_model=schemas.RefundDetailResponse)
async def get_my_refund(
    request_id: int,
    user: CurrentUser = Depends(require_student),
    refund_service: RefundService = Depends(get_refund_service)
):
    refund_request, transactions = await refund_service.get_with_transactions(request_id, user_id=user.user_id)
    return _detail(refund_request, transactions)


# ============================================================================
# ADMIN
# ============================================================================

@admin_router.get("", response_model=list[schemas.RefundRequestResponse])
async def list_refunds(
    status: Optional[RefundStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: CurrentUser = Depends(require_admin),
    refund_service: RefundService = Depends(get_refund_service)
):
    return await refund_service.list_all(status=status, limit=limit, offset=offset)


@admin_router.get("/{request_id}", response_model=schemas.RefundDetailResponse)
async def get_refund(
    request_id: int,
    admin: CurrentUser = Depends(require_admin),
    refund_service: RefundService = Depends(get_refund_service)
):
    refund_request, transactions = await refund_service.get_with_transactions(request_id)
    return _detail(refund_request, transactions)


@admin_router.post("/{request_id}/approve", response_model=schemas.RefundRequestResponse)
async def approve_refund(
    request_id: int,
    body: Optional[schemas.AdminDecision] = None,
    admin: CurrentUser = Depends(require_admin),
    refund_service: RefundService = Depends(get_refund_service)
):
    """Credit the wallet and revoke the order's enrollments"""
    return await refund_service.approve(request_id, admin.user_id, admin_note=body.admin_note if body else None)


@admin_router.post("/{request_id}/reject", response_model=schemas.RefundRequestResponse)
async def reject_refund(
    request_id: int,
    body: Optional[schemas.AdminDecision] = None,
    admin: CurrentUser = Depends(require_admin),
    refund_service: RefundService = Depends(get_refund_service)
):
    return await refund_service.reject(request_id, admin_note=body.admin_note if body else None)
