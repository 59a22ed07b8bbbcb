"""
Booking model
"""

from sqlalchemy import Column, String, ForeignKey, Enum, Numeric, Date, DateTime, Uuid
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel
from app.models.has_payment import HasPayment


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Booking(BaseModel):
    """
    Venue booking made by a customer.

    ``payment_status`` is a projection of the newest payment's status and is
    only ever written by the booking synchronizer.
    """
    __tablename__ = "bookings"

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    venue_id = Column(Uuid(as_uuid=True), ForeignKey("venues.id"), nullable=True, index=True)
    booking_date = Column(Date)
    total_price = Column(Numeric(12, 2), nullable=False)
    status = Column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )
    payment_status = Column(String(20), default="none", nullable=False)
    confirmed_at = Column(DateTime(timezone=True))

    # Relationships
    customer = relationship("User", back_populates="bookings", lazy="selectin")
    venue = relationship("Venue", back_populates="bookings", lazy="selectin")
    payments = relationship(
        "Payment",
        back_populates="booking",
        lazy="selectin",
        order_by="Payment.created_at.desc()"
    )

    @property
    def payment(self):
        """Newest payment; a booking has at most one active payment"""
        return self.payments[0] if self.payments else None

    @property
    def payment_info(self) -> HasPayment:
        return HasPayment(self.payment)

    def __repr__(self):
        return f"<Booking(id={self.id}, status={self.status}, payment_status={self.payment_status}, total={self.total_price})>"
