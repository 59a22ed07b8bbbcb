"""
Keeps the booking's payment projection in line with its payments
"""

import logging
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.database import DatabaseManager, async_session
from app.core.events import PaymentSnapshot
from app.models.base import utcnow
from app.models.booking import Booking, BookingStatus
from app.models.payment import Payment, PaymentStatus

logger = logging.getLogger(__name__)


class BookingSynchronizer:
    """
    Writes ``Booking.payment_status`` and confirms paid bookings.

    The projection follows the booking's newest payment, so a late event
    about an older (expired) payment cannot overwrite the status of the one
    that replaced it.
    """

    def __init__(self, session_factory: async_sessionmaker = async_session):
        self.db = DatabaseManager(session_factory)

    async def sync(self, payment: Union[Payment, PaymentSnapshot]) -> Optional[Booking]:
        async with self.db.atomic_transaction() as session:
            result = await session.execute(
                select(Booking).where(Booking.id == payment.booking_id).with_for_update()
            )
            booking = result.scalar_one_or_none()
            if not booking:
                logger.warning(
                    "Booking not found while syncing payment status",
                    extra={"payment_id": str(payment.id), "booking_id": str(payment.booking_id)}
                )
                return None

            newest = booking.payment
            status = PaymentStatus(newest.status if newest else payment.status)
            previous = booking.payment_status
            booking.payment_status = status.value

            if status == PaymentStatus.COMPLETED and booking.status == BookingStatus.PENDING:
                booking.status = BookingStatus.CONFIRMED
                if booking.confirmed_at is None:
                    booking.confirmed_at = utcnow()

        if previous != status.value:
            logger.info(
                f"Booking payment status {previous} -> {status.value}",
                extra={
                    "booking_id": str(booking.id),
                    "payment_id": str(payment.id),
                    "status": status.value,
                    "previous_status": previous,
                }
            )
        return booking
