"""Pytest fixtures for testing"""

import json
import pytest
from datetime import date, datetime, timezone
from typing import Generator, List

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from tanda_ledger.api.dependencies import get_clock, get_notification_client
from tanda_ledger.api.main import create_app
from tanda_ledger.domain.models import Frequency, PaymentMethod, PoolConfig
from tanda_ledger.domain.settlement import SettlementLog
from tanda_ledger.domain.state_machine import PoolStateMachine, create_pool
from tanda_ledger.infrastructure.clients.notifications import NotificationClient
from tanda_ledger.infrastructure.database.models import Base
from tanda_ledger.infrastructure.database.session import get_db
from tanda_ledger.infrastructure.memory import InMemoryPayoutRecordRepository
from tanda_ledger.utils.clock import FixedClock


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

POOL_START = date(2026, 3, 1)
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def settlement() -> SettlementLog:
    return SettlementLog(InMemoryPayoutRecordRepository())


@pytest.fixture
def roster_snapshot() -> List[dict]:
    """Four members in payout order m1..m4, each with a Venmo handle"""
    return [
        {
            "member_id": f"m{i}",
            "position": i,
            "payout_destination": {"method": "venmo", "handle": f"@member-{i}"},
        }
        for i in range(1, 5)
    ]


@pytest.fixture
def pool_config() -> PoolConfig:
    """$50 weekly, 4 rounds"""
    return PoolConfig(
        contribution_amount_cents=5000,
        frequency=Frequency.WEEKLY,
        total_rounds=4,
        start_date=POOL_START,
    )


@pytest.fixture
def pending_machine(pool_config, roster_snapshot, settlement, clock) -> PoolStateMachine:
    return create_pool("pool-1", pool_config, roster_snapshot, settlement, clock=clock)


@pytest.fixture
def machine(pending_machine: PoolStateMachine) -> PoolStateMachine:
    """Active pool with round 1 open"""
    pending_machine.start()
    pending_machine.events.drain()
    return pending_machine


def _collect(machine: PoolStateMachine, member_ids=None) -> None:
    for payment in machine.ledger.payments():
        if member_ids is None or payment.member_id in member_ids:
            machine.confirm_payment(payment.member_id, PaymentMethod.VENMO)
            machine.verify_payment(payment.member_id, "admin-1")


@pytest.fixture
def collect():
    """Confirm and verify the open round's payments for the given members (default: all)"""
    return _collect


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Extra sessions on the test database, for tests that need two concurrent readers"""
    return TestingSessionLocal


@pytest.fixture
def delivered_events() -> List[dict]:
    """Payloads the app posted to the notification webhook"""
    return []


@pytest.fixture
def client(db: Session, clock: FixedClock, delivered_events: List[dict]) -> TestClient:
    """Create FastAPI test client with test database, fixed clock and a fake webhook"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    def webhook(request: httpx.Request) -> httpx.Response:
        delivered_events.append(json.loads(request.content))
        return httpx.Response(200)

    notifier = NotificationClient(webhook_url="http://notifications.test/events", transport=httpx.MockTransport(webhook))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notification_client] = lambda: notifier
    return TestClient(app)
