"""
Audit logging listeners
"""

from app.core.logging import get_logger

from app.core.events import PaymentEvent, PaymentFailed

logger = get_logger("app.audit.payments")


class LogPaymentFailure:
    def __call__(self, event: PaymentFailed) -> None:
        payment = event.payment
        logger.warning(
            f"Payment failed: {event.reason or 'no reason given'}",
            extra={
                "event_type": event.name,
                "payment_id": str(payment.id),
                "booking_id": str(payment.booking_id),
                "transaction_ref": payment.transaction_ref,
                "amount": str(payment.amount),
                "reason": event.reason,
            }
        )


class PaymentAuditTrail:
    """One structured log line per committed payment transition"""

    def __call__(self, event: PaymentEvent) -> None:
        payment = event.payment
        logger.info(
            f"{event.name} for booking {payment.booking_id}",
            extra={
                "event_type": event.name,
                "payment_id": str(payment.id),
                "booking_id": str(payment.booking_id),
                "transaction_ref": payment.transaction_ref,
                "status": payment.status.value,
                "amount": str(payment.amount),
            }
        )
