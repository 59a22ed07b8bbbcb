"""
Payment-status queries for entities that own a payment
"""

from decimal import Decimal
from typing import Optional

from app.models.payment import Payment, PaymentStatus, label


class HasPayment:
    """
    Read-only view over an optional payment.

    Entities expose one of these (``booking.payment_info``) instead of
    inheriting payment helpers.
    """

    def __init__(self, payment: Optional[Payment]):
        self.payment = payment

    def has_payment_status(self, status: PaymentStatus) -> bool:
        if self.payment is None:
            return False
        return self.payment.status == status

    @property
    def has_completed_payment(self) -> bool:
        return self.has_payment_status(PaymentStatus.COMPLETED)

    @property
    def has_pending_payment(self) -> bool:
        return self.has_payment_status(PaymentStatus.PENDING)

    @property
    def payment_status_label(self) -> str:
        return label(self.payment.status if self.payment else None)

    @property
    def can_initiate_payment(self) -> bool:
        """No payment yet, or the last attempt failed"""
        return self.payment is None or self.payment.status == PaymentStatus.FAILED

    @property
    def can_refund_payment(self) -> bool:
        return self.has_payment_status(PaymentStatus.COMPLETED)

    @property
    def payment_amount(self) -> Optional[Decimal]:
        return self.payment.amount if self.payment else None

    @property
    def payment_transaction_ref(self) -> Optional[str]:
        return self.payment.transaction_ref if self.payment else None
