"""
Payment Service with QiCard Integration
Reconciles local payment state with the gateway for venue bookings
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.config import Settings, settings as default_settings
from app.core.database import DatabaseManager, async_session
from app.core.events import (
    EventDispatcher,
    PaymentFailed,
    PaymentRefunded,
    PaymentSnapshot,
    event_dispatcher,
    event_for,
)
from app.core.exceptions import ConcurrencyError, NotFoundError, PaymentException
from app.core.locks import KeyedLock, booking_lock_key, payment_lock_key
from app.core.metrics import record_callback, record_transition
from app.models.base import as_utc, utcnow
from app.models.booking import Booking
from app.models.has_payment import HasPayment
from app.models.payment import Payment, PaymentGatewayEvent, PaymentStatus
from app.schemas.payment import GatewayCallback
from app.services.booking_sync import BookingSynchronizer
from app.services.qicard_client import QiCardClient, map_gateway_status
from app.services.signature import WebhookVerifier

logger = logging.getLogger(__name__)


@dataclass
class PaymentHandle:
    """What the client needs to send the customer to the gateway"""
    payment_id: UUID
    booking_id: UUID
    transaction_ref: str
    payment_url: Optional[str]
    order_id: str
    request_id: Optional[str]
    status: PaymentStatus


@dataclass
class CallbackResult:
    payment: PaymentSnapshot
    applied: bool
    replayed: bool = False


@dataclass
class RefundResult:
    payment: PaymentSnapshot
    refund_id: Optional[str]
    amount: Decimal
    reason: str


class PaymentService:
    """
    Gateway reconciliation engine.

    Every state change on a payment follows the same shape: outbound gateway
    calls happen first with no lock held, then the local transition runs
    under the in-process key lock plus a row lock and commits, and only
    after the commit are the booking projection and domain events updated.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        gateway: Optional[QiCardClient] = None,
        verifier: Optional[WebhookVerifier] = None,
        dispatcher: Optional[EventDispatcher] = None,
        locks: Optional[KeyedLock] = None,
        synchronizer: Optional[BookingSynchronizer] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or default_settings
        self.db = DatabaseManager(session_factory)
        self.gateway = gateway or QiCardClient(self.settings)
        self.verifier = verifier or WebhookVerifier(self.settings)
        self.dispatcher = dispatcher or event_dispatcher
        self.locks = locks or KeyedLock(timeout=self.settings.PAYMENT_LOCK_TIMEOUT_SECONDS)
        self.synchronizer = synchronizer or BookingSynchronizer(session_factory)

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    def _is_stale(self, payment: Payment) -> bool:
        if PaymentStatus(payment.status) != PaymentStatus.PENDING:
            return False
        touched = as_utc(payment.updated_at or payment.created_at)
        if touched is None:
            return False
        ttl = timedelta(minutes=self.settings.PAYMENT_PENDING_TTL_MINUTES)
        return touched < utcnow() - ttl

    def _check_can_initiate(self, info: HasPayment) -> None:
        if info.can_initiate_payment:
            return
        if info.has_completed_payment:
            raise PaymentException.already_paid()
        # A stale pending payment is expired and replaced under the lock
        if info.has_pending_payment and self._is_stale(info.payment):
            return
        raise PaymentException.invalid_status(info.payment.status, PaymentStatus.NONE)

    @staticmethod
    def _describe(booking: Booking) -> str:
        venue = booking.venue.name if booking.venue else "venue"
        if booking.booking_date:
            return f"Booking for {venue} on {booking.booking_date.isoformat()}"
        return f"Booking for {venue}"

    async def initiate(self, booking_id: UUID, amount: Optional[Decimal] = None) -> PaymentHandle:
        """
        Create a gateway payment for a booking and record it as PENDING.

        Fails with ``already_paid`` when the booking's payment is completed
        and with ``invalid_status`` while a fresh payment is still pending.
        A pending payment older than ``PAYMENT_PENDING_TTL_MINUTES`` is
        expired (marked failed) and replaced.
        """
        async with self.db.session_factory() as session:
            booking = await session.get(Booking, booking_id)
            if not booking:
                raise NotFoundError("Booking", str(booking_id))
            self._check_can_initiate(booking.payment_info)
            description = self._describe(booking)
            if amount is None:
                amount = booking.total_price

        amount = Decimal(str(amount)) if amount is not None else Decimal("0")
        if amount <= 0:
            raise PaymentException.initiation_failed(
                f"Invalid amount: {amount}. Amount must be greater than 0.", 400
            )

        order_id = f"BK-{booking_id}-{int(time.time())}"
        gateway_payment = await self.gateway.create_payment(amount, order_id, description)

        expired: Optional[Payment] = None
        async with self.locks.hold(booking_lock_key(booking_id)):
            try:
                async with self.db.atomic_transaction() as session:
                    booking = (await session.execute(
                        select(Booking).where(Booking.id == booking_id).with_for_update()
                    )).scalar_one_or_none()
                    if not booking:
                        raise NotFoundError("Booking", str(booking_id))

                    current = booking.payment
                    if current is not None and self._is_stale(current):
                        current.transition_to(PaymentStatus.FAILED)
                        current.failure_reason = "expired"
                        expired = current
                        current = None

                    try:
                        self._check_can_initiate(HasPayment(current))
                    except PaymentException:
                        logger.warning(
                            "Payment state changed while the gateway call was in flight; "
                            "gateway payment left unused",
                            extra={"booking_id": str(booking_id), "transaction_ref": gateway_payment.payment_id}
                        )
                        raise

                    if (
                        current is not None
                        and PaymentStatus(current.status) == PaymentStatus.FAILED
                        and not current.transaction_ref
                    ):
                        payment = current
                    else:
                        payment = Payment(
                            booking_id=booking.id,
                            method="qicard",
                            currency=self.settings.QICARD_CURRENCY,
                            status=PaymentStatus.NONE,
                            raw_response={}
                        )
                        session.add(payment)

                    payment.amount = amount
                    previous = payment.transition_to(PaymentStatus.PENDING)
                    payment.assign_transaction_ref(gateway_payment.payment_id)
                    payment.merchant_order_id = order_id
                    payment.failure_reason = None
                    payment.merge_raw_response("initiation", gateway_payment.raw)
            except StaleDataError:
                raise ConcurrencyError("Booking payment was modified concurrently, please retry")

        if expired is not None:
            record_transition(PaymentStatus.PENDING, PaymentStatus.FAILED)
        record_transition(previous, PaymentStatus.PENDING)
        logger.info(
            "Payment initiated",
            extra={
                "payment_id": str(payment.id),
                "booking_id": str(booking_id),
                "transaction_ref": payment.transaction_ref,
                "amount": str(amount),
            }
        )

        # No domain event exists for PENDING, so the projection is written here
        try:
            await self.synchronizer.sync(payment)
        except Exception:
            logger.error(
                "Booking sync failed after payment initiation",
                extra={"payment_id": str(payment.id), "booking_id": str(booking_id)},
                exc_info=True
            )
        if expired is not None:
            await self.dispatcher.dispatch(
                PaymentFailed(PaymentSnapshot.from_payment(expired), reason="expired")
            )

        return PaymentHandle(
            payment_id=payment.id,
            booking_id=booking_id,
            transaction_ref=payment.transaction_ref,
            payment_url=gateway_payment.form_url,
            order_id=order_id,
            request_id=gateway_payment.request_id,
            status=PaymentStatus.PENDING,
        )

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    async def apply_callback(self, callback: GatewayCallback) -> CallbackResult:
        """
        Apply a gateway notification to its payment.

        The signature is checked before anything is read or written. An
        event id that was already applied returns ``replayed=True`` and
        changes nothing.
        """
        self.verifier.verify(callback.signed_content, callback.signature)
        payment_id = await self._payment_id_for(callback.transaction_ref)
        return await self._reconcile(payment_id, callback, source="webhook")

    async def verify(self, transaction_ref: str) -> CallbackResult:
        """
        Poll the gateway for a payment's status and reconcile it.

        The data comes from our own authenticated request, so no signature
        is involved. Repeated polls reporting the same status are replays.
        """
        payment_id = await self._payment_id_for(transaction_ref)
        data = await self.gateway.get_payment_status(transaction_ref)
        callback = GatewayCallback.from_payload({**data, "paymentId": transaction_ref})
        callback.event_id = f"status:{transaction_ref}:{callback.outcome}"
        return await self._reconcile(payment_id, callback, source="status_poll")

    async def _payment_id_for(self, transaction_ref: str) -> UUID:
        async with self.db.session_factory() as session:
            payment_id = (await session.execute(
                select(Payment.id).where(Payment.transaction_ref == transaction_ref)
            )).scalar_one_or_none()
        if payment_id is None:
            logger.warning("No payment for transaction reference", extra={"transaction_ref": transaction_ref})
            record_callback("unknown")
            raise PaymentException.verification_failed(transaction_ref)
        return payment_id

    @staticmethod
    async def _lock_payment(session: AsyncSession, payment_id: UUID) -> Payment:
        result = await session.execute(
            select(Payment).where(Payment.id == payment_id).with_for_update()
        )
        return result.scalar_one()

    async def _reconcile(self, payment_id: UUID, callback: GatewayCallback, source: str) -> CallbackResult:
        target = map_gateway_status(callback.outcome)
        context = {
            "payment_id": str(payment_id),
            "transaction_ref": callback.transaction_ref,
            "event_id": callback.event_id,
        }

        async with self.locks.hold(payment_lock_key(payment_id)):
            try:
                async with self.db.atomic_transaction() as session:
                    payment = await self._lock_payment(session, payment_id)
                    if payment.has_processed(callback.event_id):
                        logger.info("Gateway event already applied", extra=context)
                        record_callback("replayed")
                        return CallbackResult(PaymentSnapshot.from_payment(payment), applied=False, replayed=True)

                    current = PaymentStatus(payment.status)
                    entry = PaymentGatewayEvent(
                        event_id=callback.event_id,
                        source=source,
                        outcome=callback.outcome,
                        status_before=current,
                        payload=callback.raw_payload
                    )

                    applied = target not in (PaymentStatus.PENDING, current)
                    if applied:
                        payment.transition_to(target)
                        if target == PaymentStatus.FAILED:
                            payment.failure_reason = (
                                callback.failure_reason or f"Gateway reported {callback.outcome}"
                            )
                    else:
                        entry.note = "in flight" if target == PaymentStatus.PENDING else "status unchanged"

                    entry.status_after = PaymentStatus(payment.status)
                    payment.events.append(entry)
                    payment.merge_raw_response(source, callback.raw_payload)
            except IntegrityError:
                # Another worker recorded the same event id first
                logger.info("Gateway event applied concurrently", extra=context)
                record_callback("replayed")
                return CallbackResult(await self._snapshot(payment_id), applied=False, replayed=True)
            except StaleDataError:
                # Lost the version check; a duplicate of the winning event is a replay
                payment = await self._reload(payment_id)
                if not payment.has_processed(callback.event_id):
                    raise ConcurrencyError("Payment was modified concurrently, please retry")
                logger.info("Gateway event applied concurrently", extra=context)
                record_callback("replayed")
                return CallbackResult(PaymentSnapshot.from_payment(payment), applied=False, replayed=True)

        if not applied:
            record_callback("ignored")
            logger.info(
                f"Gateway event recorded without transition ({entry.note})",
                extra={**context, "status": current.value}
            )
            return CallbackResult(PaymentSnapshot.from_payment(payment), applied=False)

        record_callback("applied")
        record_transition(current, target)
        logger.info(
            f"Payment {current.value} -> {target.value}",
            extra={**context, "status": target.value, "previous_status": current.value}
        )

        event = event_for(payment)
        if event is not None:
            await self.dispatcher.dispatch(event)
        return CallbackResult(event.payment if event else PaymentSnapshot.from_payment(payment), applied=True)

    async def _reload(self, payment_id: UUID) -> Payment:
        async with self.db.session_factory() as session:
            return await session.get(Payment, payment_id)

    async def _snapshot(self, payment_id: UUID) -> PaymentSnapshot:
        return PaymentSnapshot.from_payment(await self._reload(payment_id))

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def refund(self, payment_id: UUID, reason: str, actor_id: Optional[UUID] = None) -> RefundResult:
        """Refund a completed payment through the gateway"""
        async with self.db.session_factory() as session:
            payment = await session.get(Payment, payment_id)
            if not payment:
                raise NotFoundError("Payment", str(payment_id))
            status = PaymentStatus(payment.status)
            if status != PaymentStatus.COMPLETED:
                raise PaymentException.invalid_status(status, PaymentStatus.COMPLETED)
            transaction_ref = payment.transaction_ref
            amount = payment.amount

        if not transaction_ref:
            raise PaymentException.refund_failed("Payment has no gateway transaction reference")

        gateway_refund = await self.gateway.refund(transaction_ref, amount, reason)

        refunded_here = True
        async with self.locks.hold(payment_lock_key(payment_id)):
            try:
                async with self.db.atomic_transaction() as session:
                    payment = await self._lock_payment(session, payment_id)
                    if PaymentStatus(payment.status) == PaymentStatus.REFUNDED:
                        # The gateway's own refund notification got here first
                        refunded_here = False
                    else:
                        payment.transition_to(PaymentStatus.REFUNDED)
                    payment.refund_reason = reason
                    payment.refund_id = gateway_refund.refund_id or payment.refund_id
                    payment.merge_raw_response("refund", gateway_refund.raw)
            except StaleDataError:
                logger.error(
                    "Gateway refund succeeded but the local update lost a concurrent write; "
                    "payment needs manual reconciliation",
                    extra={
                        "payment_id": str(payment_id),
                        "transaction_ref": transaction_ref,
                        "refund_id": gateway_refund.refund_id,
                        "amount": str(amount),
                    }
                )
                raise ConcurrencyError("Payment was modified concurrently, please retry")

        snapshot = PaymentSnapshot.from_payment(payment)
        logger.info(
            "Payment refunded",
            extra={
                "payment_id": str(payment_id),
                "booking_id": str(snapshot.booking_id),
                "transaction_ref": transaction_ref,
                "amount": str(amount),
                "reason": reason,
                "user_id": str(actor_id) if actor_id else None,
            }
        )

        if refunded_here:
            record_transition(PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)
            await self.dispatcher.dispatch(PaymentRefunded(snapshot, amount=amount, reason=reason))

        return RefundResult(payment=snapshot, refund_id=payment.refund_id, amount=amount, reason=reason)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_payment(self, payment_id: UUID) -> Payment:
        async with self.db.session_factory() as session:
            payment = await session.get(Payment, payment_id)
            if not payment:
                raise NotFoundError("Payment", str(payment_id))
            return payment

    async def get_payment_by_order_id(self, order_id: str) -> Optional[Payment]:
        async with self.db.session_factory() as session:
            result = await session.execute(
                select(Payment).where(Payment.merchant_order_id == order_id)
            )
            return result.scalar_one_or_none()

    async def list_payments(
        self,
        status: Optional[PaymentStatus] = None,
        customer_id: Optional[UUID] = None,
        booking_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 20
    ) -> Tuple[List[Payment], int]:
        """Newest first, with the total count for pagination"""
        query = select(Payment)
        if customer_id is not None:
            query = query.join(Booking, Payment.booking_id == Booking.id).where(Booking.customer_id == customer_id)
        if booking_id is not None:
            query = query.where(Payment.booking_id == booking_id)
        if status is not None:
            query = query.where(Payment.status == status)

        async with self.db.session_factory() as session:
            total = (await session.execute(
                select(func.count()).select_from(query.subquery())
            )).scalar()
            result = await session.execute(
                query.order_by(Payment.created_at.desc()).offset(skip).limit(limit)
            )
            return list(result.scalars().all()), total


# Create global payment service
payment_service = PaymentService()
