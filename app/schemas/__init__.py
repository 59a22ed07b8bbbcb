"""
Pydantic schemas for request and response validation
"""

from app.schemas.payment import (
    GatewayCallback,
    PaymentInitiationResponse,
    PaymentResponse,
    PaymentDetailResponse,
    RefundRequest,
    RefundResponse,
    ReconciliationResponse
)
from app.schemas.response import (
    ErrorResponse,
    MessageResponse,
    PaginatedResponse
)

__all__ = [
    "GatewayCallback",
    "PaymentInitiationResponse",
    "PaymentResponse",
    "PaymentDetailResponse",
    "RefundRequest",
    "RefundResponse",
    "ReconciliationResponse",
    "ErrorResponse",
    "MessageResponse",
    "PaginatedResponse"
]
