"""
Custom application exceptions
"""

import enum
import logging
from typing import Optional, Dict, Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MawidException(Exception):
    """Base exception for Mawid application"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(MawidException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_ERROR",
            status_code=401,
            details=details
        )


class AuthorizationError(MawidException):
    """Authorization related errors"""

    def __init__(self, message: str = "Not authorized", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_FORBIDDEN",
            status_code=403,
            details=details
        )


class NotFoundError(MawidException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404
        )


class ValidationError(MawidException):
    """Validation errors"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class ConcurrencyError(MawidException):
    """Concurrency conflict error"""

    def __init__(self, message: str = "Resource was modified by another process"):
        super().__init__(
            message=message,
            code="CONCURRENCY_ERROR",
            status_code=409
        )


class PaymentErrorKind(str, enum.Enum):
    INITIATION_FAILED = "initiation_failed"
    VERIFICATION_FAILED = "verification_failed"
    INVALID_SIGNATURE = "invalid_signature"
    ALREADY_PAID = "already_paid"
    INVALID_STATUS = "invalid_status"
    REFUND_FAILED = "refund_failed"
    GATEWAY_TIMEOUT = "gateway_timeout"
    MISSING_CONFIGURATION = "missing_configuration"


class PaymentException(MawidException):
    """
    Payment domain errors.

    One exception type for every payment failure; ``kind`` tells them apart
    and ``code`` is the stable identifier returned to API clients.
    """

    def __init__(
        self,
        kind: PaymentErrorKind,
        message: str,
        status_code: int,
        details: Optional[Dict[str, Any]] = None
    ):
        self.kind = kind
        super().__init__(
            message=message,
            code=f"PAYMENT_{kind.value.upper()}",
            status_code=status_code,
            details=details
        )

    @classmethod
    def initiation_failed(cls, message: str = "Payment initiation failed", status_code: int = 500):
        return cls(PaymentErrorKind.INITIATION_FAILED, message, status_code)

    @classmethod
    def verification_failed(cls, transaction_ref: str):
        return cls(
            PaymentErrorKind.VERIFICATION_FAILED,
            f"Payment verification failed for transaction: {transaction_ref}",
            422,
            {"transaction_ref": transaction_ref}
        )

    @classmethod
    def invalid_signature(cls):
        return cls(PaymentErrorKind.INVALID_SIGNATURE, "Invalid payment signature", 401)

    @classmethod
    def already_paid(cls):
        return cls(PaymentErrorKind.ALREADY_PAID, "This booking has already been paid", 400)

    @classmethod
    def invalid_status(cls, current: str, required: str):
        current = getattr(current, "value", current)
        required = getattr(required, "value", required)
        return cls(
            PaymentErrorKind.INVALID_STATUS,
            f"Payment status must be '{required}' but is currently '{current}'",
            400,
            {"current": current, "required": required}
        )

    @classmethod
    def refund_failed(cls, reason: str):
        return cls(
            PaymentErrorKind.REFUND_FAILED,
            f"Refund failed: {reason}",
            500,
            {"reason": reason}
        )

    @classmethod
    def gateway_timeout(cls):
        return cls(PaymentErrorKind.GATEWAY_TIMEOUT, "Payment gateway timeout. Please try again.", 504)

    @classmethod
    def missing_configuration(cls, key: str):
        return cls(
            PaymentErrorKind.MISSING_CONFIGURATION,
            f"Missing payment configuration: {key}",
            500,
            {"key": key}
        )


async def mawid_exception_handler(request: Request, exc: MawidException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            f"{exc.code}: {exc.message}",
            extra={"path": request.url.path, "error": exc.code}
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {
                "code": exc.code,
                "message": exc.message,
                "details": exc.details
            }
        }
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map the application exception hierarchy onto JSON error responses"""
    app.add_exception_handler(MawidException, mawid_exception_handler)
