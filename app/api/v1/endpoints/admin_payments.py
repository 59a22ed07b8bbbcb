"""
Admin payment management endpoints
"""

import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_payment_service
from app.core.permissions import PROCESS_PAYMENTS, REFUND_PAYMENTS, VIEW_PAYMENTS
from app.core.security import require_permission
from app.models.payment import PaymentStatus
from app.models.user import User
from app.schemas.payment import (
    PaymentDetailResponse,
    PaymentResponse,
    ReconciliationResponse,
    RefundRequest,
    RefundResponse,
)
from app.schemas.response import PaginatedResponse, PaginationMeta
from app.services.payment_service import PaymentService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[PaymentResponse])
async def list_payments(
    status: Optional[PaymentStatus] = Query(None),
    booking_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    admin_user: User = Depends(require_permission(VIEW_PAYMENTS)),
    service: PaymentService = Depends(get_payment_service)
):
    """
    List payments across all bookings
    """
    payments, total = await service.list_payments(
        status=status,
        booking_id=booking_id,
        skip=(page - 1) * per_page,
        limit=per_page
    )
    total_pages = math.ceil(total / per_page) if total else 0

    return PaginatedResponse[PaymentResponse](
        data=[PaymentResponse.model_validate(payment) for payment in payments],
        pagination=PaginationMeta(
            page=page,
            per_page=per_page,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1
        )
    )


@router.get("/{payment_id}", response_model=PaymentDetailResponse)
async def get_payment(
    payment_id: UUID,
    admin_user: User = Depends(require_permission(VIEW_PAYMENTS)),
    service: PaymentService = Depends(get_payment_service)
):
    return await service.get_payment(payment_id)


@router.post("/{payment_id}/refund", response_model=RefundResponse)
async def refund_payment(
    payment_id: UUID,
    refund_request: RefundRequest,
    admin_user: User = Depends(require_permission(REFUND_PAYMENTS)),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Refund a completed payment through QiCard
    """
    result = await service.refund(payment_id, refund_request.reason, actor_id=admin_user.id)

    return RefundResponse(
        payment_id=result.payment.id,
        refund_id=result.refund_id,
        amount=result.amount,
        status=result.payment.status,
        reason=result.reason,
        refunded_at=result.payment.refunded_at
    )


@router.post("/verify/{transaction_ref}", response_model=ReconciliationResponse)
async def verify_payment(
    transaction_ref: str,
    admin_user: User = Depends(require_permission(PROCESS_PAYMENTS)),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Re-sync a payment with the gateway's view of it
    """
    return ReconciliationResponse.from_result(await service.verify(transaction_ref))
