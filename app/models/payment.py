"""
Payment model and the payment status transition graph
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional, Set

from sqlalchemy import Column, String, Numeric, Enum, DateTime, ForeignKey, Integer, Text, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
import enum

from app.core.exceptions import PaymentException
from app.models.base import BaseModel, utcnow


class PaymentStatus(str, enum.Enum):
    NONE = "none"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def label(self) -> str:
        return label(self)


PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.NONE: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

_LABELS = {
    PaymentStatus.NONE: "No Payment",
    PaymentStatus.PENDING: "Pending",
    PaymentStatus.COMPLETED: "Completed",
    PaymentStatus.FAILED: "Failed",
    PaymentStatus.REFUNDED: "Refunded",
}


def is_legal_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def label(status: Optional[PaymentStatus]) -> str:
    if status is None:
        return _LABELS[PaymentStatus.NONE]
    return _LABELS[PaymentStatus(status)]


def required_status_for(target: PaymentStatus) -> PaymentStatus:
    """
    Source state a payment has to be in before it may move to ``target``.

    PENDING is reachable from both NONE and FAILED; FAILED is reported since
    that is the state a caller can actually get a payment back into.
    """
    sources = [source for source, targets in PAYMENT_TRANSITIONS.items() if target in targets]
    if PaymentStatus.FAILED in sources:
        return PaymentStatus.FAILED
    if not sources:
        return target
    return sources[0]


# Timestamp set exactly once when the payment enters each state
_STATUS_TIMESTAMPS = {
    PaymentStatus.COMPLETED: "completed_at",
    PaymentStatus.FAILED: "failed_at",
    PaymentStatus.REFUNDED: "refunded_at",
}


class Payment(BaseModel):
    """
    Payment model tracking one gateway transaction for a booking
    """
    __tablename__ = "payments"

    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=False, index=True)
    method = Column(String(50), default="qicard", nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), default="IQD", nullable=False)
    status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.NONE,
        nullable=False,
        index=True
    )
    merchant_order_id = Column(String(100), index=True)
    transaction_ref = Column(String(255), unique=True, nullable=True)
    raw_response = Column(JSON, default=dict)

    failure_reason = Column(String(500))
    refund_reason = Column(String(500))
    refund_id = Column(String(255))

    # Timestamps
    completed_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    refunded_at = Column(DateTime(timezone=True))

    # Optimistic concurrency guard
    version = Column(Integer, nullable=False)

    # Relationships
    booking = relationship("Booking", back_populates="payments", lazy="selectin")
    events = relationship(
        "PaymentGatewayEvent",
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PaymentGatewayEvent.created_at"
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def gateway_event_ids(self) -> Set[str]:
        return {event.event_id for event in self.events}

    def has_processed(self, event_id: str) -> bool:
        return event_id in self.gateway_event_ids

    def transition_to(self, target: PaymentStatus, at: Optional[datetime] = None) -> PaymentStatus:
        """
        Move to ``target`` along the transition graph and stamp the matching timestamp.

        Returns the previous status. Raises ``PaymentException.invalid_status``
        for any edge not in the graph.
        """
        current = PaymentStatus(self.status or PaymentStatus.NONE)
        target = PaymentStatus(target)
        if not is_legal_transition(current, target):
            raise PaymentException.invalid_status(current, required_status_for(target))

        self.status = target
        column = _STATUS_TIMESTAMPS.get(target)
        if column and getattr(self, column) is None:
            setattr(self, column, at or utcnow())
        return current

    def assign_transaction_ref(self, transaction_ref: str) -> None:
        if self.transaction_ref and self.transaction_ref != transaction_ref:
            raise PaymentException.initiation_failed("Transaction reference already assigned")
        self.transaction_ref = transaction_ref

    def merge_raw_response(self, key: str, data) -> None:
        # Reassign so the JSON column is flagged dirty
        merged = dict(self.raw_response or {})
        merged[key] = data
        self.raw_response = merged

    def __repr__(self):
        return f"<Payment(id={self.id}, booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"


class PaymentGatewayEvent(BaseModel):
    """
    Gateway notification applied to a payment.

    The unique (payment_id, event_id) pair is what makes callback processing
    idempotent across worker processes.
    """
    __tablename__ = "payment_gateway_events"

    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id"), nullable=False, index=True)
    event_id = Column(String(255), nullable=False)
    source = Column(String(20), default="webhook", nullable=False)
    outcome = Column(String(50))
    status_before = Column(Enum(PaymentStatus))
    status_after = Column(Enum(PaymentStatus))
    payload = Column(JSON, default=dict)
    note = Column(Text)

    payment = relationship("Payment", back_populates="events")

    __table_args__ = (
        UniqueConstraint("payment_id", "event_id", name="uq_payment_gateway_event"),
    )

    def __repr__(self):
        return f"<PaymentGatewayEvent(payment_id={self.payment_id}, event_id={self.event_id})>"
