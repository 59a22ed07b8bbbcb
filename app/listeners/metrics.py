"""
Prometheus listener
"""

from app.core.events import PaymentEvent
from app.core.metrics import PAYMENT_EVENTS


class RecordPaymentMetrics:
    def __call__(self, event: PaymentEvent) -> None:
        PAYMENT_EVENTS.labels(event=event.name).inc()
