"""
Domain events and post-commit dispatch

Events are published only after the payment transition that produced them
has been committed. Subscribers are registered once at startup
(see ``app.listeners.register_listeners``) and run in priority order;
a failing subscriber is retried with backoff and then logged and dropped,
it never fails the transition that triggered it.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Type
from uuid import UUID

from app.models.payment import Payment, PaymentStatus

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Optional[Awaitable[None]]]

# Upper bound on a single backoff sleep
MAX_BACKOFF_SECONDS = 30.0


@dataclass(frozen=True)
class PaymentSnapshot:
    """Immutable copy of a payment as committed"""
    id: UUID
    booking_id: UUID
    status: PaymentStatus
    amount: Decimal
    currency: str
    transaction_ref: Optional[str] = None
    merchant_order_id: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentSnapshot":
        return cls(
            id=payment.id,
            booking_id=payment.booking_id,
            status=PaymentStatus(payment.status),
            amount=payment.amount,
            currency=payment.currency,
            transaction_ref=payment.transaction_ref,
            merchant_order_id=payment.merchant_order_id,
            failure_reason=payment.failure_reason,
            refund_reason=payment.refund_reason,
            completed_at=payment.completed_at,
            refunded_at=payment.refunded_at,
        )


@dataclass(frozen=True)
class PaymentEvent:
    payment: PaymentSnapshot

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class PaymentCompleted(PaymentEvent):
    pass


@dataclass(frozen=True)
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass(frozen=True)
class PaymentRefunded(PaymentEvent):
    amount: Optional[Decimal] = None
    reason: Optional[str] = None


def event_for(payment: Payment, reason: Optional[str] = None) -> Optional[PaymentEvent]:
    """Domain event announcing the payment's current (freshly committed) status"""
    snapshot = PaymentSnapshot.from_payment(payment)
    if snapshot.status == PaymentStatus.COMPLETED:
        return PaymentCompleted(snapshot)
    if snapshot.status == PaymentStatus.FAILED:
        return PaymentFailed(snapshot, reason=reason or payment.failure_reason)
    if snapshot.status == PaymentStatus.REFUNDED:
        return PaymentRefunded(snapshot, amount=payment.amount, reason=reason or payment.refund_reason)
    return None


@dataclass
class Subscription:
    handler: Handler
    name: str
    priority: int = 100
    max_attempts: int = 1
    backoff: float = 0.0
    background: bool = False
    order: int = 0


@dataclass
class DispatchReport:
    """Outcome of the inline part of a dispatch"""
    event: PaymentEvent
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    scheduled: List[str] = field(default_factory=list)


class EventDispatcher:
    """
    Registry of event subscribers.

    Inline subscribers are awaited in priority order (lowest first) before
    ``dispatch`` returns; background subscribers are scheduled as tasks.
    Subscribing to ``PaymentEvent`` receives every payment event.
    """

    def __init__(self):
        self._subscriptions: Dict[Type, List[Subscription]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()
        self._counter = 0

    def subscribe(
        self,
        event_type: Type,
        handler: Handler,
        *,
        priority: int = 100,
        max_attempts: int = 1,
        backoff: float = 0.0,
        background: bool = False,
        name: Optional[str] = None
    ) -> Subscription:
        self._counter += 1
        subscription = Subscription(
            handler=handler,
            name=name or getattr(handler, "__qualname__", repr(handler)),
            priority=priority,
            max_attempts=max(1, max_attempts),
            backoff=backoff,
            background=background,
            order=self._counter
        )
        self._subscriptions[event_type].append(subscription)
        return subscription

    def listen(self, event_type: Type, **options):
        """Decorator form of ``subscribe``"""
        def decorator(handler: Handler) -> Handler:
            self.subscribe(event_type, handler, **options)
            return handler
        return decorator

    def subscriptions_for(self, event_type: Type) -> List[Subscription]:
        found = []
        for klass in event_type.__mro__:
            found.extend(self._subscriptions.get(klass, []))
        return sorted(found, key=lambda s: (s.priority, s.order))

    def clear(self) -> None:
        self._subscriptions.clear()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def dispatch(self, event: PaymentEvent) -> DispatchReport:
        report = DispatchReport(event=event)
        for subscription in self.subscriptions_for(type(event)):
            if subscription.background:
                task = asyncio.create_task(self._run(subscription, event))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                report.scheduled.append(subscription.name)
            elif await self._run(subscription, event):
                report.succeeded.append(subscription.name)
            else:
                report.failed.append(subscription.name)
        return report

    async def drain(self) -> None:
        """Wait for scheduled background subscribers to finish"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, subscription: Subscription, event: PaymentEvent) -> bool:
        payment = event.payment
        for attempt in range(1, subscription.max_attempts + 1):
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
                return True
            except Exception as e:
                context = {
                    "event_type": event.name,
                    "payment_id": str(payment.id),
                    "booking_id": str(payment.booking_id),
                    "attempt": attempt,
                    "error": f"{type(e).__name__}: {e}",
                }
                if attempt < subscription.max_attempts:
                    logger.warning(
                        f"Listener {subscription.name} failed for {event.name}, retrying",
                        extra=context
                    )
                    wait_time = min(subscription.backoff * (2 ** (attempt - 1)), MAX_BACKOFF_SECONDS)
                    if wait_time > 0:
                        await asyncio.sleep(wait_time)
                else:
                    logger.error(
                        f"Listener {subscription.name} gave up on {event.name} after {attempt} attempt(s)",
                        extra=context,
                        exc_info=True
                    )
        return False


# Create global event dispatcher
event_dispatcher = EventDispatcher()
