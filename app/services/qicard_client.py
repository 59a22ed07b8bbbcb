"""
QiCard (Iraq) payment gateway client
Thin async wrapper over the QiCard REST API
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Optional

import httpx

from app.config import Settings, settings as default_settings
from app.core.exceptions import PaymentException
from app.core.metrics import track_gateway_call
from app.models.payment import PaymentStatus

logger = logging.getLogger(__name__)

# Gateway status strings grouped by the internal status they mean
_SUCCESS_STATUSES = {"SUCCESS", "COMPLETED", "APPROVED", "PAID", "CONFIRMED"}
_IN_FLIGHT_STATUSES = {"PENDING", "PROCESSING", "INITIATED", "CREATED", "AWAITING"}
_REFUND_STATUSES = {"REFUNDED", "REVERSED"}
_FAILURE_STATUSES = {"FAILED", "DECLINED", "REJECTED", "CANCELLED", "ERROR"}


def map_gateway_status(gateway_status: Optional[str]) -> PaymentStatus:
    """
    Map a QiCard status string onto the internal payment status.

    Unknown strings count as failures, so a payment is never completed on
    an outcome we do not understand.
    """
    value = (gateway_status or "").strip().upper()
    if value in _SUCCESS_STATUSES:
        return PaymentStatus.COMPLETED
    if value in _IN_FLIGHT_STATUSES:
        return PaymentStatus.PENDING
    if value in _REFUND_STATUSES:
        return PaymentStatus.REFUNDED
    if value not in _FAILURE_STATUSES:
        logger.warning(f"Unknown QiCard status '{gateway_status}', treating as failed")
    return PaymentStatus.FAILED


def format_amount(amount) -> int:
    """QiCard takes whole units of the currency (IQD has no minor unit)"""
    formatted = int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if formatted <= 0:
        raise PaymentException.initiation_failed(
            f"Invalid amount: {amount}. Amount must be greater than 0.", 400
        )
    return formatted


@dataclass
class GatewayPayment:
    """Response of the payment-creation endpoint"""
    payment_id: str
    status: str
    form_url: Optional[str] = None
    request_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayRefund:
    refund_id: Optional[str]
    status: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)


class QiCardClient:
    """
    QiCard REST client.

    Credentials are read from settings when a request is made, so a
    partially configured deployment still boots and only payment calls fail
    with ``missing_configuration``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.settings = settings or default_settings
        self._transport = transport

    def _require(self, key: str) -> str:
        value = getattr(self.settings, key, None)
        if value in (None, ""):
            raise PaymentException.missing_configuration(key)
        return value

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._require("QICARD_BASE_URL"),
            auth=(self._require("QICARD_USERNAME"), self._require("QICARD_PASSWORD")),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "X-Terminal-Id": str(self._require("QICARD_TERMINAL_ID")),
            },
            timeout=self.settings.QICARD_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        unavailable: Callable[[], PaymentException],
        **kwargs
    ) -> httpx.Response:
        async with self._client() as client:
            with track_gateway_call(operation):
                try:
                    return await client.request(method, path, **kwargs)
                except httpx.TimeoutException:
                    logger.error(f"QiCard {operation} timed out", extra={"path": path})
                    raise PaymentException.gateway_timeout()
                except httpx.HTTPError as e:
                    logger.error(f"QiCard {operation} transport error: {e}", extra={"path": path})
                    raise unavailable()

    async def create_payment(
        self,
        amount,
        merchant_order_id: str,
        description: str,
        request_id: Optional[str] = None
    ) -> GatewayPayment:
        """POST /payment"""
        payload = {
            "requestId": request_id or f"REQ-{merchant_order_id}-{int(time.time())}",
            "amount": format_amount(amount),
            "currency": self.settings.QICARD_CURRENCY,
            "merchantOrderId": merchant_order_id,
            "description": description,
            "finishPaymentUrl": self.settings.QICARD_RETURN_URL,
            "returnUrl": self.settings.QICARD_RETURN_URL,
            "notificationUrl": self.settings.QICARD_WEBHOOK_URL,
        }
        if self.settings.QICARD_CANCEL_URL:
            payload["cancelUrl"] = self.settings.QICARD_CANCEL_URL
        logger.info(
            "QiCard payment request",
            extra={"transaction_ref": merchant_order_id, "amount": payload["amount"]}
        )

        response = await self._request(
            "create_payment",
            "POST",
            "payment",
            lambda: PaymentException.initiation_failed(
                "QiCard payment gateway is temporarily unavailable. Please try again in a few moments.", 503
            ),
            json=payload
        )

        if not response.is_success:
            status_code = response.status_code
            logger.error(
                f"QiCard payment creation failed with {status_code}: {response.text}",
                extra={"transaction_ref": merchant_order_id}
            )
            if status_code in (502, 503, 504):
                raise PaymentException.initiation_failed(
                    f"QiCard payment gateway is temporarily unavailable. Please try again in a few moments. (Error: {status_code})",
                    503
                )
            if status_code in (401, 403):
                raise PaymentException.initiation_failed(
                    f"Payment gateway authentication failed. Please contact support. (Error: {status_code})",
                    502
                )
            raise PaymentException.initiation_failed(
                f"Payment gateway error: {response.text} (Status: {status_code})", 502
            )

        data = response.json()
        payment_id = data.get("paymentId")
        if not payment_id:
            raise PaymentException.initiation_failed("Payment gateway response did not include a paymentId", 502)

        return GatewayPayment(
            payment_id=payment_id,
            status=data.get("status", "CREATED"),
            form_url=data.get("formUrl"),
            request_id=data.get("requestId"),
            raw=data,
        )

    async def get_payment_status(self, transaction_ref: str) -> Dict[str, Any]:
        """GET /payment/{paymentId}/status"""
        response = await self._request(
            "payment_status",
            "GET",
            f"payment/{transaction_ref}/status",
            lambda: PaymentException.verification_failed(transaction_ref)
        )
        if not response.is_success:
            logger.error(
                f"QiCard status check failed with {response.status_code}: {response.text}",
                extra={"transaction_ref": transaction_ref}
            )
            raise PaymentException.verification_failed(transaction_ref)
        return response.json()

    async def refund(self, transaction_ref: str, amount, reason: str) -> GatewayRefund:
        """POST /refunds/{paymentId}"""
        payload = {
            "amount": format_amount(amount),
            "reason": reason or "Booking cancelled",
        }
        response = await self._request(
            "refund",
            "POST",
            f"refunds/{transaction_ref}",
            lambda: PaymentException.refund_failed("QiCard payment gateway is unavailable"),
            json=payload
        )
        if not response.is_success:
            logger.error(
                f"QiCard refund failed with {response.status_code}: {response.text}",
                extra={"transaction_ref": transaction_ref}
            )
            raise PaymentException.refund_failed(response.text or f"gateway returned {response.status_code}")

        data = response.json() if response.content else {}
        return GatewayRefund(
            refund_id=data.get("refundId") or data.get("refund_id"),
            status=data.get("status"),
            raw=data,
        )
