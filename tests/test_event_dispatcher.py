"""
Tests for post-commit event dispatch
"""

import asyncio
import uuid
from decimal import Decimal

import pytest

from app.core.events import (
    EventDispatcher,
    PaymentCompleted,
    PaymentEvent,
    PaymentFailed,
    PaymentRefunded,
    PaymentSnapshot,
    event_for,
)
from app.models.payment import Payment, PaymentStatus


def snapshot(status=PaymentStatus.COMPLETED) -> PaymentSnapshot:
    return PaymentSnapshot(
        id=uuid.uuid4(),
        booking_id=uuid.uuid4(),
        status=status,
        amount=Decimal("25000.00"),
        currency="IQD",
        transaction_ref="QI-1",
    )


@pytest.mark.unit
class TestEventFor:
    def _payment(self, status, **kwargs) -> Payment:
        return Payment(
            id=uuid.uuid4(),
            booking_id=uuid.uuid4(),
            status=status,
            amount=Decimal("1000.00"),
            currency="IQD",
            **kwargs
        )

    def test_completed(self):
        assert isinstance(event_for(self._payment(PaymentStatus.COMPLETED)), PaymentCompleted)

    def test_failed_carries_reason(self):
        event = event_for(self._payment(PaymentStatus.FAILED, failure_reason="DECLINED"))

        assert isinstance(event, PaymentFailed)
        assert event.reason == "DECLINED"

    def test_refunded_carries_amount(self):
        event = event_for(self._payment(PaymentStatus.REFUNDED, refund_reason="customer request"))

        assert isinstance(event, PaymentRefunded)
        assert event.amount == Decimal("1000.00")
        assert event.reason == "customer request"

    def test_pending_has_no_event(self):
        assert event_for(self._payment(PaymentStatus.PENDING)) is None

    def test_snapshot_is_frozen(self):
        event = PaymentCompleted(snapshot())

        with pytest.raises(AttributeError):
            event.payment.status = PaymentStatus.FAILED


@pytest.mark.asyncio
class TestEventDispatcher:
    """Test subscriber ordering, retries and background work"""

    async def test_priority_order(self):
        dispatcher = EventDispatcher()
        calls = []
        dispatcher.subscribe(PaymentCompleted, lambda e: calls.append("notify"), priority=100)
        dispatcher.subscribe(PaymentCompleted, lambda e: calls.append("sync"), priority=0)
        dispatcher.subscribe(PaymentCompleted, lambda e: calls.append("audit"), priority=50)

        await dispatcher.dispatch(PaymentCompleted(snapshot()))

        assert calls == ["sync", "audit", "notify"]

    async def test_base_class_subscribers_receive_all_events(self):
        dispatcher = EventDispatcher()
        seen = []
        dispatcher.subscribe(PaymentEvent, lambda e: seen.append(e.name))
        dispatcher.subscribe(PaymentFailed, lambda e: seen.append("failed-only"))

        await dispatcher.dispatch(PaymentCompleted(snapshot()))
        await dispatcher.dispatch(PaymentFailed(snapshot(PaymentStatus.FAILED), reason="x"))

        assert seen == ["PaymentCompleted", "PaymentFailed", "failed-only"]

    async def test_listen_decorator_and_async_handlers(self):
        dispatcher = EventDispatcher()
        seen = []

        @dispatcher.listen(PaymentRefunded)
        async def on_refund(event):
            seen.append(event.reason)

        await dispatcher.dispatch(PaymentRefunded(snapshot(PaymentStatus.REFUNDED), reason="customer request"))

        assert seen == ["customer request"]

    async def test_retries_until_success(self):
        dispatcher = EventDispatcher()
        attempts = []

        def flaky(event):
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("try again")

        dispatcher.subscribe(PaymentCompleted, flaky, max_attempts=3, name="flaky")

        report = await dispatcher.dispatch(PaymentCompleted(snapshot()))

        assert len(attempts) == 3
        assert report.succeeded == ["flaky"]

    async def test_exhausted_handler_is_dropped(self):
        dispatcher = EventDispatcher()
        after = []

        def broken(event):
            raise RuntimeError("boom")

        dispatcher.subscribe(PaymentCompleted, broken, max_attempts=2, name="broken")
        dispatcher.subscribe(PaymentCompleted, lambda e: after.append(e), priority=200, name="after")

        report = await dispatcher.dispatch(PaymentCompleted(snapshot()))

        assert report.failed == ["broken"]
        assert report.succeeded == ["after"]
        assert len(after) == 1

    async def test_background_handlers_are_drained(self):
        dispatcher = EventDispatcher()
        done = []

        async def slow(event):
            await asyncio.sleep(0.01)
            done.append(event.name)

        dispatcher.subscribe(PaymentCompleted, slow, background=True, name="slow")

        report = await dispatcher.dispatch(PaymentCompleted(snapshot()))
        assert report.scheduled == ["slow"]

        await dispatcher.drain()
        assert done == ["PaymentCompleted"]
        assert dispatcher.pending_tasks == 0

    async def test_clear(self):
        dispatcher = EventDispatcher()
        dispatcher.subscribe(PaymentCompleted, lambda e: None)

        dispatcher.clear()

        assert dispatcher.subscriptions_for(PaymentCompleted) == []
