"""
Unit tests for the payment status model
"""

import pytest
from decimal import Decimal

from app.core.exceptions import PaymentErrorKind, PaymentException
from app.models.booking import Booking
from app.models.has_payment import HasPayment
from app.models.payment import (
    PAYMENT_TRANSITIONS,
    Payment,
    PaymentStatus,
    is_legal_transition,
    label,
    required_status_for,
)


def make_payment(status: PaymentStatus, **kwargs) -> Payment:
    return Payment(status=status, amount=Decimal("25000.00"), currency="IQD", **kwargs)


@pytest.mark.unit
class TestTransitionGraph:
    """Test the allowed status edges"""

    @pytest.mark.parametrize("current,target", [
        (PaymentStatus.NONE, PaymentStatus.PENDING),
        (PaymentStatus.PENDING, PaymentStatus.COMPLETED),
        (PaymentStatus.PENDING, PaymentStatus.FAILED),
        (PaymentStatus.FAILED, PaymentStatus.PENDING),
        (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED),
    ])
    def test_legal_edges(self, current, target):
        assert is_legal_transition(current, target) is True

    @pytest.mark.parametrize("current,target", [
        (PaymentStatus.COMPLETED, PaymentStatus.PENDING),
        (PaymentStatus.COMPLETED, PaymentStatus.FAILED),
        (PaymentStatus.REFUNDED, PaymentStatus.COMPLETED),
        (PaymentStatus.REFUNDED, PaymentStatus.PENDING),
        (PaymentStatus.NONE, PaymentStatus.COMPLETED),
        (PaymentStatus.FAILED, PaymentStatus.COMPLETED),
        (PaymentStatus.PENDING, PaymentStatus.REFUNDED),
    ])
    def test_illegal_edges(self, current, target):
        assert is_legal_transition(current, target) is False

    def test_refunded_is_terminal(self):
        assert PAYMENT_TRANSITIONS[PaymentStatus.REFUNDED] == frozenset()

    def test_accepts_raw_values(self):
        assert is_legal_transition("pending", "completed") is True


@pytest.mark.unit
class TestLabels:
    """Test human readable status labels"""

    @pytest.mark.parametrize("status,expected", [
        (None, "No Payment"),
        (PaymentStatus.NONE, "No Payment"),
        (PaymentStatus.PENDING, "Pending"),
        (PaymentStatus.COMPLETED, "Completed"),
        (PaymentStatus.FAILED, "Failed"),
        (PaymentStatus.REFUNDED, "Refunded"),
    ])
    def test_label(self, status, expected):
        assert label(status) == expected

    def test_enum_label_property(self):
        assert PaymentStatus.REFUNDED.label == "Refunded"


@pytest.mark.unit
class TestRequiredStatus:
    def test_refunded_requires_completed(self):
        assert required_status_for(PaymentStatus.REFUNDED) == PaymentStatus.COMPLETED

    def test_completed_requires_pending(self):
        assert required_status_for(PaymentStatus.COMPLETED) == PaymentStatus.PENDING

    def test_pending_reports_failed(self):
        assert required_status_for(PaymentStatus.PENDING) == PaymentStatus.FAILED


@pytest.mark.unit
class TestPaymentTransitions:
    """Test Payment.transition_to"""

    def test_completion_stamps_timestamp(self):
        payment = make_payment(PaymentStatus.PENDING)

        previous = payment.transition_to(PaymentStatus.COMPLETED)

        assert previous == PaymentStatus.PENDING
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.completed_at is not None

    def test_new_payment_starts_from_none(self):
        payment = Payment(amount=Decimal("1000"), currency="IQD")

        assert payment.transition_to(PaymentStatus.PENDING) == PaymentStatus.NONE
        assert payment.status == PaymentStatus.PENDING

    def test_illegal_transition_raises_invalid_status(self):
        payment = make_payment(PaymentStatus.COMPLETED)

        with pytest.raises(PaymentException) as exc_info:
            payment.transition_to(PaymentStatus.PENDING)

        assert exc_info.value.kind == PaymentErrorKind.INVALID_STATUS
        assert exc_info.value.details == {"current": "completed", "required": "failed"}
        assert payment.status == PaymentStatus.COMPLETED

    def test_refund_of_refunded_payment(self):
        payment = make_payment(PaymentStatus.REFUNDED)

        with pytest.raises(PaymentException) as exc_info:
            payment.transition_to(PaymentStatus.REFUNDED)

        assert exc_info.value.details == {"current": "refunded", "required": "completed"}

    def test_transaction_ref_assigned_once(self):
        payment = make_payment(PaymentStatus.PENDING)
        payment.assign_transaction_ref("QI-1")
        payment.assign_transaction_ref("QI-1")

        with pytest.raises(PaymentException):
            payment.assign_transaction_ref("QI-2")
        assert payment.transaction_ref == "QI-1"

    def test_merge_raw_response_keeps_existing_keys(self):
        payment = make_payment(PaymentStatus.PENDING, raw_response={"initiation": {"a": 1}})

        payment.merge_raw_response("webhook", {"b": 2})

        assert payment.raw_response == {"initiation": {"a": 1}, "webhook": {"b": 2}}


@pytest.mark.unit
class TestHasPayment:
    """Test the payment capability helper"""

    def test_without_payment(self):
        info = HasPayment(None)

        assert info.has_completed_payment is False
        assert info.has_pending_payment is False
        assert info.can_initiate_payment is True
        assert info.can_refund_payment is False
        assert info.payment_status_label == "No Payment"
        assert info.payment_amount is None
        assert info.payment_transaction_ref is None

    def test_pending_payment(self):
        info = HasPayment(make_payment(PaymentStatus.PENDING, transaction_ref="QI-7"))

        assert info.has_pending_payment is True
        assert info.can_initiate_payment is False
        assert info.payment_status_label == "Pending"
        assert info.payment_transaction_ref == "QI-7"

    def test_failed_payment_can_be_retried(self):
        info = HasPayment(make_payment(PaymentStatus.FAILED))

        assert info.can_initiate_payment is True
        assert info.has_payment_status(PaymentStatus.FAILED) is True

    def test_completed_payment_can_be_refunded(self):
        info = HasPayment(make_payment(PaymentStatus.COMPLETED))

        assert info.can_refund_payment is True
        assert info.can_initiate_payment is False
        assert info.payment_amount == Decimal("25000.00")

    def test_booking_exposes_newest_payment(self):
        newest = make_payment(PaymentStatus.PENDING)
        older = make_payment(PaymentStatus.FAILED)
        booking = Booking(total_price=Decimal("25000.00"))
        booking.payments = [newest, older]

        assert booking.payment is newest
        assert booking.payment_info.has_pending_payment is True
