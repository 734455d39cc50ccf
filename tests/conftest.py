"""
Shared pytest fixtures for all test modules.

Uses an in-memory SQLite database (StaticPool) so every test
function gets a clean, isolated database with no disk I/O.
The gateway and the email sender are replaced by in-memory fakes.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models
from app.config import Settings, get_settings
from app.database import Base
from app.dependencies import get_gateway, get_initiator, get_reconciler
from app.errors import GatewayError
from app.gateways.base import BaseGateway, GatewayOrder, GatewayOrderStatus
from app.models import utcnow
from app.notifications.base import BaseNotifier
from app.services.initiation import OrderInitiator
from app.services.reconciliation import ReconciliationEngine
from app.services.store import TransactionStore


# ---------------------------------------------------------------------------
# In-memory database engine shared across all fixtures in a test session.
# StaticPool forces all SQLAlchemy connections to reuse the same underlying
# sqlite3 connection, which is required for in-memory SQLite.
# ---------------------------------------------------------------------------
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------
class FakeGateway(BaseGateway):
    """Gateway that answers from an in-memory status table."""

    def __init__(self):
        self.statuses: Dict[str, str] = {}
        self.created_orders: List[dict] = []
        self.status_calls: List[str] = []
        self.fail_create: Optional[str] = None
        self.fail_status: Optional[str] = None
        self.valid_signature = "valid-signature"

    @property
    def gateway_name(self) -> str:
        return "fake"

    async def create_order(self, order_id, amount, currency, customer, urls, note=None):
        if self.fail_create:
            raise GatewayError(self.fail_create)
        self.created_orders.append({
            "order_id": order_id,
            "amount": amount,
            "currency": currency,
            "customer": customer,
            "urls": urls,
            "note": note,
        })
        self.statuses[order_id] = "ACTIVE"
        return GatewayOrder(
            order_id=order_id,
            session_token=f"session_{order_id}",
            raw={"order_id": order_id, "payment_session_id": f"session_{order_id}"},
        )

    async def get_order_status(self, order_id):
        self.status_calls.append(order_id)
        if self.fail_status:
            raise GatewayError(self.fail_status)
        status = self.statuses.get(order_id, "ACTIVE")
        return GatewayOrderStatus(
            status=status,
            amount=1000.0,
            currency="INR",
            raw={
                "order_id": order_id,
                "order_status": status,
                "order_amount": 1000.0,
                "order_currency": "INR",
                "customer_details": {"customer_phone": "9876543210"},
            },
        )

    def verify_webhook_signature(self, raw_body, timestamp, signature):
        return signature == self.valid_signature


class RecordingNotifier(BaseNotifier):
    """Email sender that records messages in memory for test assertions."""

    def __init__(self, delay: float = 0.0):
        self.sent: List[tuple] = []
        self.attempts: List[tuple] = []
        self.should_succeed = True
        self.delay = delay

    async def send_success_email(self, kind, payload):
        self.attempts.append((kind, payload.transaction_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.should_succeed:
            return False
        self.sent.append((kind, payload.transaction_id))
        return True

    def sent_for(self, transaction_id: str, kind=None) -> list:
        return [
            s for s in self.sent
            if s[1] == transaction_id and (kind is None or s[0] == kind)
        ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def reset_db():
    """Drop and recreate all tables before each test for full isolation."""
    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db(reset_db):
    """Yield a SQLAlchemy session backed by the in-memory test database."""
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        app_env="test",
        debug=False,
        gateway_client_id="test_client",
        gateway_client_secret="test_secret",
        frontend_url="https://shop.example.com",
        backend_url="https://api.example.com",
        admin_email="admin@example.com",
        brand_name="Example Labs",
        transaction_id_prefix="HFU",
    )


@pytest.fixture
def session_factory(db):
    return TestingSession


@pytest.fixture
def store(session_factory):
    return TransactionStore(session_factory)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(store, gateway, notifier):
    return ReconciliationEngine(store, gateway, notifier, claim_ttl_seconds=300)


@pytest.fixture
def initiator(store, gateway, test_settings):
    return OrderInitiator(gateway, store, test_settings)


@pytest.fixture
def client(store, gateway, engine, initiator, test_settings):
    """
    FastAPI TestClient with every collaborator dependency overridden.
    The TestClient is NOT used as a context manager so the lifespan hook
    (which builds the real gateway, SMTP sender and on-disk DB) is skipped.
    """
    from app.main import app

    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_reconciler] = lambda: engine
    app.dependency_overrides[get_initiator] = lambda: initiator
    app.dependency_overrides[get_settings] = lambda: test_settings
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helper, not a fixture, so any test file can import and call it directly.
# ---------------------------------------------------------------------------
def make_txn(
    db,
    txn_id: str,
    status: str = "INITIATED",
    amount: float = 1000.00,
    currency: str = "INR",
    customer_name: str = "Asha Rao",
    customer_email: str = "asha@example.com",
    customer_phone: str = "9876543210",
    plan: Optional[str] = "Premium",
    duration: Optional[str] = "12",
    created_at: Optional[datetime] = None,   # defaults to 1 hour ago
    admin_email_sent: bool = False,
    customer_email_sent: bool = False,
) -> models.Transaction:
    if created_at is None:
        created_at = utcnow() - timedelta(hours=1)
    txn = models.Transaction(
        id=txn_id,
        customer_name=customer_name,
        customer_email=customer_email,
        customer_phone=customer_phone,
        amount=amount,
        currency=currency,
        plan=plan,
        duration=duration,
        status=status,
        gateway_order_id=txn_id,
        session_token=f"session_{txn_id}",
        admin_email_sent=admin_email_sent,
        customer_email_sent=customer_email_sent,
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn
