"""
Payment API Endpoints
Customer payment flow and the QiCard webhook/return endpoints
"""

import json
import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_payment_service
from app.core.database import get_session
from app.core.exceptions import NotFoundError, PaymentException, ValidationError
from app.core.logging import LoggerAdapter
from app.core.permissions import VIEW_PAYMENTS, has_permission
from app.core.security import get_current_user
from app.models.booking import Booking
from app.models.payment import Payment, PaymentStatus
from app.models.user import User
from app.schemas.payment import (
    GatewayCallback,
    PaymentDetailResponse,
    PaymentInitiationResponse,
    PaymentResponse,
    ReconciliationResponse,
)
from app.schemas.response import MessageResponse
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


def _ensure_owner(customer_id: UUID, user: User, resource: str, identifier) -> None:
    # Other customers get a 404 so ids cannot be probed
    if customer_id != user.id and not has_permission(user.role, VIEW_PAYMENTS):
        raise NotFoundError(resource, identifier)


@router.post("/bookings/{booking_id}/initiate", response_model=PaymentInitiationResponse)
async def initiate_payment(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Start a QiCard payment for one of the caller's bookings.

    The charge is always the booking's total price; any request body is ignored.
    """
    booking = await db.get(Booking, booking_id)
    if not booking or booking.customer_id != current_user.id:
        raise NotFoundError("Booking", booking_id)

    handle = await service.initiate(booking_id)

    return PaymentInitiationResponse(
        payment_id=handle.payment_id,
        booking_id=handle.booking_id,
        transaction_id=handle.transaction_ref,
        payment_url=handle.payment_url,
        order_id=handle.order_id,
        request_id=handle.request_id,
        status=handle.status
    )


@router.post("/verify/{transaction_ref}", response_model=ReconciliationResponse)
async def verify_payment(
    transaction_ref: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: PaymentService = Depends(get_payment_service)
):
    """Ask the gateway for the payment's status and apply it"""
    result = await db.execute(
        select(Booking.customer_id)
        .join(Payment, Payment.booking_id == Booking.id)
        .where(Payment.transaction_ref == transaction_ref)
    )
    customer_id = result.scalar_one_or_none()
    if customer_id is None:
        raise PaymentException.verification_failed(transaction_ref)
    _ensure_owner(customer_id, current_user, "Payment", transaction_ref)

    return ReconciliationResponse.from_result(await service.verify(transaction_ref))


@router.get("/history", response_model=List[PaymentResponse])
async def payment_history(
    status: Optional[PaymentStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Payments for the caller's bookings, newest first"""
    payments, _ = await service.list_payments(
        status=status,
        customer_id=current_user.id,
        skip=skip,
        limit=limit
    )
    return payments


@router.post("/webhook", response_model=ReconciliationResponse)
async def payment_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None),
    service: PaymentService = Depends(get_payment_service)
):
    """
    QiCard server-to-server notification.

    Unauthenticated; the RSA signature (``X-Signature`` header or a
    ``signature`` body field) is what authorizes the request.
    """
    log = LoggerAdapter(logger, {
        "request_id": getattr(request.state, "request_id", None),
        "path": request.url.path
    })
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        raise ValidationError("Webhook body must be valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")

    try:
        callback = GatewayCallback.from_payload(payload, raw_body, x_signature)
        result = await service.apply_callback(callback)
    except PaymentException as e:
        log.warning(
            f"Webhook rejected: {e.message}",
            extra={"error": e.code, "event_id": payload.get("eventId")}
        )
        raise

    return ReconciliationResponse.from_result(result)


@router.get("/callback", response_model=ReconciliationResponse)
async def payment_callback(
    payment_id: Optional[str] = Query(None, alias="paymentId"),
    transaction_id: Optional[str] = Query(None),
    service: PaymentService = Depends(get_payment_service)
):
    """Return URL the gateway redirects the customer to"""
    transaction_ref = payment_id or transaction_id
    if not transaction_ref:
        raise ValidationError("Payment ID not provided", field="paymentId")

    logger.info("Payment callback received", extra={"transaction_ref": transaction_ref})
    return ReconciliationResponse.from_result(await service.verify(transaction_ref))


@router.get("/cancel", response_model=MessageResponse)
async def payment_cancel(
    transaction_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_session)
):
    """Customer abandoned the gateway page; the payment expires on its own"""
    if transaction_id:
        payment_id = (await db.execute(
            select(Payment.id).where(Payment.transaction_ref == transaction_id)
        )).scalar_one_or_none()
        if payment_id:
            logger.info(
                "Payment cancelled by user",
                extra={"payment_id": str(payment_id), "transaction_ref": transaction_id}
            )
    return MessageResponse(message="Payment cancelled")


@router.get("/{payment_id}", response_model=PaymentDetailResponse)
async def get_payment(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Payment details with the gateway events applied to it"""
    payment = await service.get_payment(payment_id)
    _ensure_owner(payment.booking.customer_id, current_user, "Payment", payment_id)
    return payment
