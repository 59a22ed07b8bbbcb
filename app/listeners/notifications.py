"""
Customer notification listeners
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.database import async_session
from app.core.events import PaymentCompleted, PaymentEvent, PaymentRefunded
from app.models.booking import Booking
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)


class SendPaymentConfirmationEmail:
    """
    Emails the customer when a payment completes or is refunded.

    Runs in the background; delivery errors propagate so the dispatcher
    can retry them.
    """

    def __init__(self, email_service: EmailService, session_factory: async_sessionmaker = async_session):
        self.email_service = email_service
        self.session_factory = session_factory

    async def _load_booking(self, event: PaymentEvent) -> Optional[Booking]:
        async with self.session_factory() as session:
            return await session.get(Booking, event.payment.booking_id)

    async def __call__(self, event: PaymentEvent) -> None:
        booking = await self._load_booking(event)
        if not booking or not booking.customer or not booking.customer.email:
            logger.warning(
                "No customer email for payment notification",
                extra={"payment_id": str(event.payment.id), "booking_id": str(event.payment.booking_id)}
            )
            return

        customer = booking.customer
        details = {
            "booking_id": str(booking.id),
            "venue_name": booking.venue.name if booking.venue else None,
            "booking_date": booking.booking_date.isoformat() if booking.booking_date else None,
            "amount": str(event.payment.amount),
            "currency": event.payment.currency,
            "transaction_ref": event.payment.transaction_ref,
        }

        if isinstance(event, PaymentRefunded):
            details["amount"] = str(event.amount if event.amount is not None else event.payment.amount)
            details["reason"] = event.reason
            await self.email_service.send_refund_notice(customer.email, customer.full_name, details)
        elif isinstance(event, PaymentCompleted):
            await self.email_service.send_payment_confirmation(customer.email, customer.full_name, details)
