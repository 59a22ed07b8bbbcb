"""
Unit tests for the error taxonomy
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.exceptions import (
    ConcurrencyError,
    NotFoundError,
    PaymentErrorKind,
    PaymentException,
    register_exception_handlers,
)
from app.models.payment import PaymentStatus


@pytest.mark.unit
class TestPaymentException:
    """Test codes and HTTP statuses of payment errors"""

    @pytest.mark.parametrize("exc,code,status_code", [
        (PaymentException.initiation_failed(), "PAYMENT_INITIATION_FAILED", 500),
        (PaymentException.verification_failed("QI-1"), "PAYMENT_VERIFICATION_FAILED", 422),
        (PaymentException.invalid_signature(), "PAYMENT_INVALID_SIGNATURE", 401),
        (PaymentException.already_paid(), "PAYMENT_ALREADY_PAID", 400),
        (PaymentException.invalid_status("pending", "completed"), "PAYMENT_INVALID_STATUS", 400),
        (PaymentException.refund_failed("declined"), "PAYMENT_REFUND_FAILED", 500),
        (PaymentException.gateway_timeout(), "PAYMENT_GATEWAY_TIMEOUT", 504),
        (PaymentException.missing_configuration("QICARD_USERNAME"), "PAYMENT_MISSING_CONFIGURATION", 500),
    ])
    def test_codes(self, exc, code, status_code):
        assert exc.code == code
        assert exc.status_code == status_code

    def test_initiation_failed_custom_status(self):
        exc = PaymentException.initiation_failed("Gateway down", 503)

        assert exc.kind == PaymentErrorKind.INITIATION_FAILED
        assert exc.status_code == 503
        assert exc.message == "Gateway down"

    def test_invalid_status_accepts_enums(self):
        exc = PaymentException.invalid_status(PaymentStatus.REFUNDED, PaymentStatus.COMPLETED)

        assert exc.details == {"current": "refunded", "required": "completed"}
        assert exc.message == "Payment status must be 'completed' but is currently 'refunded'"

    def test_verification_failed_carries_reference(self):
        exc = PaymentException.verification_failed("QI-42")

        assert exc.details["transaction_ref"] == "QI-42"
        assert "QI-42" in str(exc)


@pytest.mark.unit
class TestExceptionHandler:
    """Test the JSON error envelope"""

    def _app(self) -> FastAPI:
        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/paid")
        async def paid():
            raise PaymentException.already_paid()

        @app.get("/missing")
        async def missing():
            raise NotFoundError("Payment", "abc")

        @app.get("/busy")
        async def busy():
            raise ConcurrencyError()

        return app

    def test_payment_error_envelope(self):
        response = TestClient(self._app()).get("/paid")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "PAYMENT_ALREADY_PAID"
        assert body["error"]["message"] == "This booking has already been paid"

    def test_not_found(self):
        response = TestClient(self._app()).get("/missing")

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Payment with id abc not found"

    def test_concurrency_conflict(self):
        response = TestClient(self._app()).get("/busy")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONCURRENCY_ERROR"
