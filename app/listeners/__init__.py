"""
Payment event listeners

``register_listeners`` wires every subscriber once, from the application
lifespan. Booking synchronization runs first so the other subscribers see
the updated projection.
"""

from typing import Optional

from app.config import Settings, settings as default_settings
from app.core.events import (
    EventDispatcher,
    PaymentCompleted,
    PaymentEvent,
    PaymentFailed,
    PaymentRefunded,
)
from app.listeners.audit import LogPaymentFailure, PaymentAuditTrail
from app.listeners.booking import UpdateBookingStatusOnPayment
from app.listeners.metrics import RecordPaymentMetrics
from app.listeners.notifications import SendPaymentConfirmationEmail
from app.services.booking_sync import BookingSynchronizer
from app.services.email_service import EmailService

BOOKING_SYNC_PRIORITY = 0
AUDIT_PRIORITY = 50
NOTIFICATION_PRIORITY = 100


def register_listeners(
    dispatcher: EventDispatcher,
    synchronizer: BookingSynchronizer,
    email_service: EmailService,
    settings: Optional[Settings] = None
) -> EventDispatcher:
    settings = settings or default_settings

    # PaymentEvent subscribers receive all three event types
    dispatcher.subscribe(
        PaymentEvent,
        UpdateBookingStatusOnPayment(synchronizer),
        priority=BOOKING_SYNC_PRIORITY,
        max_attempts=settings.BOOKING_SYNC_MAX_ATTEMPTS,
        backoff=0.1,
        name="UpdateBookingStatusOnPayment"
    )
    dispatcher.subscribe(PaymentEvent, PaymentAuditTrail(), priority=AUDIT_PRIORITY, name="PaymentAuditTrail")
    dispatcher.subscribe(PaymentFailed, LogPaymentFailure(), priority=AUDIT_PRIORITY, name="LogPaymentFailure")
    dispatcher.subscribe(PaymentEvent, RecordPaymentMetrics(), priority=AUDIT_PRIORITY, name="RecordPaymentMetrics")

    notifier = SendPaymentConfirmationEmail(email_service, synchronizer.db.session_factory)
    for event_type in (PaymentCompleted, PaymentRefunded):
        dispatcher.subscribe(
            event_type,
            notifier,
            priority=NOTIFICATION_PRIORITY,
            max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
            backoff=settings.NOTIFICATION_RETRY_BACKOFF_SECONDS,
            background=True,
            name="SendPaymentConfirmationEmail"
        )
    return dispatcher


__all__ = ["register_listeners"]
