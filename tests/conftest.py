"""
Test configuration and fixtures
"""

import base64
import os
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict, List

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

# Set test environment before the settings singleton is created
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-validation"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-that-is-long-enough-for-tests"
os.environ["QICARD_VERIFY_WEBHOOKS"] = "false"
os.environ["PROMETHEUS_ENABLED"] = "false"

# Import all models BEFORE creating fixtures (critical for create_all to work)
from app.core.database import Base, create_engine_for, create_session_factory
from app.models.user import User, UserRole
from app.models.venue import Venue
from app.models.booking import Booking
from app.models.payment import Payment, PaymentGatewayEvent  # noqa: F401
from app.config import settings
from app.core.events import EventDispatcher, PaymentEvent
from app.core.locks import KeyedLock
from app.core.security import create_access_token
from app.listeners import register_listeners
from app.services.booking_sync import BookingSynchronizer
from app.services.payment_service import PaymentService
from app.services.qicard_client import QiCardClient
from app.services.signature import WebhookVerifier


class FakeQiCard:
    """
    In-memory QiCard API behind an ``httpx.MockTransport``.

    ``statuses`` controls what the status endpoint reports per payment id;
    ``failures`` maps an operation name to a status code (or an exception)
    returned instead of the normal answer.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.statuses: Dict[str, str] = {}
        self.failures: Dict[str, object] = {}
        self._counter = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, operation: str) -> List[httpx.Request]:
        return [r for r in self.requests if self._operation(r) == operation]

    @staticmethod
    def _operation(request: httpx.Request) -> str:
        path = request.url.path
        if request.method == "POST" and path.endswith("/payment"):
            return "create_payment"
        if request.method == "GET" and path.endswith("/status"):
            return "payment_status"
        if request.method == "POST" and "/refunds/" in path:
            return "refund"
        return "unknown"

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        operation = self._operation(request)

        failure = self.failures.get(operation)
        if isinstance(failure, Exception):
            raise failure
        if isinstance(failure, int):
            return httpx.Response(failure, text=f"{operation} unavailable")

        if operation == "create_payment":
            self._counter += 1
            payment_id = f"QI-{self._counter}"
            self.statuses.setdefault(payment_id, "CREATED")
            return httpx.Response(200, json={
                "paymentId": payment_id,
                "formUrl": f"https://pay.qi.test/form/{payment_id}",
                "requestId": f"REQ-{self._counter}",
                "status": "CREATED",
            })
        if operation == "payment_status":
            payment_id = request.url.path.split("/")[-2]
            return httpx.Response(200, json={
                "paymentId": payment_id,
                "status": self.statuses.get(payment_id, "SUCCESS"),
            })
        if operation == "refund":
            payment_id = request.url.path.split("/")[-1]
            return httpx.Response(200, json={"refundId": f"RF-{payment_id}", "status": "REFUNDED"})
        return httpx.Response(404)


class FakeEmailService:
    """Records notification calls; ``fail_times`` makes the first N raise"""

    def __init__(self, fail_times: int = 0):
        self.sent: List[tuple] = []
        self.fail_times = fail_times
        self.attempts = 0

    async def _record(self, kind: str, email: str, details: Dict) -> bool:
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise ConnectionError("SendGrid unreachable")
        self.sent.append((kind, email, details))
        return True

    async def send_payment_confirmation(self, user_email, user_name, payment_details):
        return await self._record("confirmation", user_email, payment_details)

    async def send_refund_notice(self, user_email, user_name, payment_details):
        return await self._record("refund", user_email, payment_details)


class EventRecorder:
    def __init__(self):
        self.events: List[PaymentEvent] = []

    def __call__(self, event: PaymentEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [event.name for event in self.events]


@pytest.fixture
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def public_key_path(tmp_path, rsa_private_key):
    """Gateway public key written as PEM"""
    path = tmp_path / "qicard-public.pem"
    path.write_bytes(
        rsa_private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )
    )
    return path


@pytest.fixture
def sign(rsa_private_key):
    """Sign bytes the way QiCard does (RSA-SHA256, base64)"""
    def _sign(body: bytes) -> str:
        signature = rsa_private_key.sign(body, padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode()
    return _sign


@pytest.fixture
def test_settings(public_key_path):
    """Settings with gateway credentials and fast retries"""
    return settings.model_copy(update={
        "QICARD_BASE_URL": "https://qicard.test/api/v1/",
        "QICARD_USERNAME": "merchant",
        "QICARD_PASSWORD": "secret",
        "QICARD_TERMINAL_ID": "T-100",
        "QICARD_RETURN_URL": "https://mawid.test/api/v1/payments/callback",
        "QICARD_WEBHOOK_URL": "https://mawid.test/api/v1/payments/webhook",
        "QICARD_PUBLIC_KEY_PATH": str(public_key_path),
        "QICARD_VERIFY_WEBHOOKS": False,
        "NOTIFICATION_RETRY_BACKOFF_SECONDS": 0.0,
        "PAYMENT_LOCK_TIMEOUT_SECONDS": 5.0,
    })


@pytest_asyncio.fixture(scope="function")
async def test_db(tmp_path):
    """
    File backed SQLite engine.

    NullPool gives every session its own connection, so concurrent sessions
    behave like separate workers instead of sharing one transaction.
    """
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_db):
    return create_session_factory(test_db)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


@pytest.fixture
def fake_qicard():
    return FakeQiCard()


@pytest.fixture
def fake_email():
    return FakeEmailService()


@pytest.fixture
def synchronizer(session_factory):
    return BookingSynchronizer(session_factory)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def dispatcher(synchronizer, fake_email, test_settings, recorder):
    """Dispatcher wired like the application, plus an event recorder"""
    dispatcher = EventDispatcher()
    register_listeners(dispatcher, synchronizer, fake_email, test_settings)
    dispatcher.subscribe(PaymentEvent, recorder, priority=1000, name="recorder")
    return dispatcher


@pytest.fixture
def payment_service(session_factory, fake_qicard, dispatcher, synchronizer, test_settings):
    return PaymentService(
        session_factory=session_factory,
        gateway=QiCardClient(test_settings, transport=fake_qicard.transport),
        verifier=WebhookVerifier(test_settings),
        dispatcher=dispatcher,
        locks=KeyedLock(timeout=test_settings.PAYMENT_LOCK_TIMEOUT_SECONDS),
        synchronizer=synchronizer,
        settings=test_settings
    )


# User fixtures
@pytest_asyncio.fixture
async def test_customer(db_session):
    """Create test customer"""
    user = User(
        email="customer@example.com",
        full_name="Test Customer",
        phone="+9647700000000",
        role=UserRole.CUSTOMER,
        is_active=True
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def other_customer(db_session):
    user = User(
        email="other@example.com",
        full_name="Other Customer",
        role=UserRole.CUSTOMER,
        is_active=True
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_admin(db_session):
    """Create test admin user"""
    admin = User(
        email="admin@example.com",
        full_name="Admin User",
        role=UserRole.ADMIN,
        is_active=True
    )
    db_session.add(admin)
    await db_session.commit()
    await db_session.refresh(admin)
    return admin


@pytest_asyncio.fixture
async def test_venue(db_session):
    """Create test venue"""
    venue = Venue(
        name="Grand Hall",
        address="Karrada Street",
        city="Baghdad"
    )
    db_session.add(venue)
    await db_session.commit()
    await db_session.refresh(venue)
    return venue


@pytest_asyncio.fixture
async def test_booking(db_session, test_customer, test_venue):
    """Create a pending booking with no payment yet"""
    booking = Booking(
        customer_id=test_customer.id,
        venue_id=test_venue.id,
        booking_date=date(2026, 11, 1),
        total_price=Decimal("50000.00")
    )
    db_session.add(booking)
    await db_session.commit()
    await db_session.refresh(booking)
    return booking


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers(test_customer):
    return auth_headers(test_customer)


@pytest.fixture
def admin_headers(test_admin):
    return auth_headers(test_admin)


@pytest_asyncio.fixture
async def client(session_factory, payment_service):
    """Create test client with dependency overrides"""
    from app.main import app
    from app.api.deps import get_payment_service
    from app.core.database import get_session

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_payment_service] = lambda: payment_service

    try:
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def other_headers(other_customer):
    return auth_headers(other_customer)


@pytest.fixture
def headers_for():
    """Bearer headers for an arbitrary user"""
    return auth_headers
