"""
Shared pytest fixtures for all test modules.

Uses an in-memory SQLite database (StaticPool) so every test
function gets a clean, isolated database — no disk I/O, no state leakage.
"""
import asyncio
import pytest
from datetime import datetime, timedelta
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from typing import Dict, List, Optional, Union

from app.database import Base, get_db
from app.gateways.base import BaseGateway, GatewayStatus
from app import models
from app.services.events import EventBus


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
def session_factory(reset_db):
    """Session factory bound to the test engine, for components that open their own sessions."""
    return TestingSession


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def received(bus):
    """Every event published on the bus, in order."""
    events = []
    bus.subscribe("*", events.append)
    return events


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def client(db, bus, gateway):
    """
    FastAPI TestClient with the real DB dependency overridden to use
    the in-memory test session.  The TestClient is NOT used as a context
    manager so the lifespan hook (which starts the real poller) is skipped.
    """
    from app.main import app
    from app.services.poller import ReconciliationPoller

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.state.bus = bus
    app.state.gateway = gateway
    app.state.poller = ReconciliationPoller(TestingSession, gateway, bus, priority_delay=0)
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers — not fixtures — so any test file can import and call them directly.
# ---------------------------------------------------------------------------
class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedGateway(BaseGateway):
    """
    Gateway whose answer per order code is set by the test.

    A value may be a raw-normalized status ("completed", "pending", ...) or an
    exception instance to raise. Unscripted codes answer "pending".
    """

    def __init__(self, answers: Optional[Dict[str, Union[str, Exception]]] = None, delay: float = 0):
        self.answers = dict(answers or {})
        self.transaction_ids: Dict[str, str] = {}
        self.calls: List[str] = []
        self.delay = delay

    @property
    def gateway_name(self) -> str:
        return "scripted"

    async def get_status(self, order_code: str) -> GatewayStatus:
        self.calls.append(order_code)
        if self.delay:
            await asyncio.sleep(self.delay)
        answer = self.answers.get(order_code, "pending")
        if isinstance(answer, Exception):
            raise answer
        return GatewayStatus(
            order_code=order_code,
            status=answer,
            transaction_id=self.transaction_ids.get(order_code),
            paid_at=None,
            raw_response={"status": answer},
        )


def make_payment(
    db,
    order_code: str,
    status: str = "pending",
    amount: float = 200000.0,
    created_at: Optional[datetime] = None,   # defaults to 1 hour ago
    patient_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    record_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    description: Optional[str] = None,
) -> models.Payment:
    if created_at is None:
        created_at = datetime.utcnow() - timedelta(hours=1)
    payment = models.Payment(
        order_code=order_code,
        status=status,
        amount=amount,
        payment_method="payos",
        description=description,
        patient_id=patient_id,
        doctor_id=doctor_id,
        record_id=record_id,
        transaction_id=transaction_id,
        created_at=created_at,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def make_booking(
    db,
    record_id: str,
    patient_id: str = "PAT000001",
    amount: float = 200000.0,
    created_at: Optional[datetime] = None,
    doctor_id: Optional[str] = "DOC000001",
    transaction_id: Optional[str] = None,
    order_code: Optional[str] = None,
    status: str = "pending",
) -> models.BookingRecord:
    if created_at is None:
        created_at = datetime.utcnow() - timedelta(hours=1)
    booking = models.BookingRecord(
        record_id=record_id,
        patient_id=patient_id,
        doctor_id=doctor_id,
        amount=amount,
        transaction_id=transaction_id,
        order_code=order_code,
        status=status,
        created_at=created_at,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


def fetch_payment(db, order_code: str) -> models.Payment:
    """Re-read a payment, bypassing the session's identity map."""
    db.expire_all()
    return db.query(models.Payment).filter(models.Payment.order_code == order_code).one()
