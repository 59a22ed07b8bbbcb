"""
Booking projection listener
"""

from app.core.events import PaymentEvent
from app.services.booking_sync import BookingSynchronizer


class UpdateBookingStatusOnPayment:
    """Copies a committed payment status onto its booking"""

    def __init__(self, synchronizer: BookingSynchronizer):
        self.synchronizer = synchronizer

    async def __call__(self, event: PaymentEvent) -> None:
        await self.synchronizer.sync(event.payment)
