"""
Payment schemas for request/response models
"""

import json
from typing import Optional, Dict, Any, List
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
import uuid

from app.core.exceptions import PaymentException
from app.models.payment import PaymentStatus
from app.schemas.base import BaseSchema

# Field names QiCard has been seen using for the same value
_REFERENCE_FIELDS = ("paymentId", "transactionId", "transaction_id", "id", "orderId")
_STATUS_FIELDS = ("status", "orderStatus", "paymentStatus", "state")
_EVENT_ID_FIELDS = ("eventId", "event_id", "notificationId")
_REASON_FIELDS = ("failureReason", "failure_reason", "reason")


def _first(payload: Dict[str, Any], names) -> Optional[str]:
    for name in names:
        value = payload.get(name)
        if value not in (None, ""):
            return str(value)
    return None


def canonical_payload(payload: Dict[str, Any]) -> bytes:
    """Bytes a body-embedded signature is computed over"""
    unsigned = {k: v for k, v in payload.items() if k != "signature"}
    return json.dumps(unsigned, sort_keys=True, separators=(",", ":"), default=str).encode()


class GatewayCallback(BaseModel):
    """Normalized gateway notification"""
    transaction_ref: str
    event_id: str
    outcome: str
    signature: Optional[str] = None
    signed_content: bytes = b""
    failure_reason: Optional[str] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        raw_body: bytes = b"",
        signature: Optional[str] = None
    ) -> "GatewayCallback":
        """
        Build a callback from a webhook body.

        A signature sent in the ``X-Signature`` header covers the raw body;
        one embedded in the body covers the canonical JSON of the other fields.
        """
        transaction_ref = _first(payload, _REFERENCE_FIELDS)
        if not transaction_ref:
            raise PaymentException.verification_failed("unknown")

        outcome = (_first(payload, _STATUS_FIELDS) or "unknown").upper()
        event_id = _first(payload, _EVENT_ID_FIELDS) or f"{transaction_ref}:{outcome}"

        if signature:
            signed_content = raw_body
        else:
            signature = payload.get("signature")
            signed_content = canonical_payload(payload)

        return cls(
            transaction_ref=transaction_ref,
            event_id=event_id,
            outcome=outcome,
            signature=signature,
            signed_content=signed_content,
            failure_reason=_first(payload, _REASON_FIELDS),
            raw_payload=payload,
        )


class PaymentInitiationResponse(BaseModel):
    payment_id: uuid.UUID
    booking_id: uuid.UUID
    transaction_id: Optional[str]
    payment_url: Optional[str]
    order_id: str
    request_id: Optional[str] = None
    status: PaymentStatus


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    method: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    transaction_ref: Optional[str] = None
    merchant_order_id: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime


class PaymentGatewayEventResponse(BaseSchema):
    event_id: str
    source: str
    outcome: Optional[str] = None
    status_before: Optional[PaymentStatus] = None
    status_after: Optional[PaymentStatus] = None
    created_at: datetime


class PaymentDetailResponse(PaymentResponse):
    events: List[PaymentGatewayEventResponse] = []


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class RefundResponse(BaseModel):
    payment_id: uuid.UUID
    refund_id: Optional[str]
    amount: Decimal
    status: PaymentStatus
    reason: str
    refunded_at: Optional[datetime]


class ReconciliationResponse(BaseModel):
    payment_id: uuid.UUID
    booking_id: uuid.UUID
    status: PaymentStatus
    amount: Decimal
    applied: bool
    replayed: bool
    completed_at: Optional[datetime] = None

    @classmethod
    def from_result(cls, result) -> "ReconciliationResponse":
        payment = result.payment
        return cls(
            payment_id=payment.id,
            booking_id=payment.booking_id,
            status=payment.status,
            amount=payment.amount,
            applied=result.applied,
            replayed=result.replayed,
            completed_at=payment.completed_at,
        )
