"""Pytest configuration and shared fixtures."""
import os

# Keep the module-level store engine off disk during tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from payflow.api.schemas import PaymentRequestRecord, RequestDraft, User
from payflow.database import Base, build_engine, get_db
from payflow.main import create_app
from payflow.models.enums import CutoffStatus, RequestStatus, RiskLevel, Role
from payflow.services.repository import SqlAlchemyRepository
from payflow.services.state_machine import RequestStateMachine

NOW = datetime(2026, 3, 2, 10, 0, 0)


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class SwitchableTransport(httpx.AsyncBaseTransport):
    """Routes client calls into the store app; ``online = False`` simulates an outage."""

    def __init__(self, app):
        self.inner = httpx.ASGITransport(app=app)
        self.online = True

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("store unreachable", request=request)
        return await self.inner.handle_async_request(request)


@pytest.fixture
def db_engine(tmp_path):
    """
    Fresh database for each test.

    File-backed so concurrent calls from several client sessions each get
    their own connection.
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'store.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    TestingSessionLocal = sessionmaker(bind=db_engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def repo(db_session):
    return SqlAlchemyRepository(db_session)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def machine(repo, clock):
    return RequestStateMachine(repo, clock=clock)


@pytest.fixture
def submitter():
    return User(id="u-1", username="desk", name="Dana Desk", role=Role.SUBMISSION_DESK)


@pytest.fixture
def approver():
    return User(id="u-2", username="approver", name="Avery Approver", role=Role.APPROVER)


@pytest.fixture
def finance():
    return User(id="u-3", username="finance", name="Fin Ops", role=Role.FINANCE)


@pytest.fixture
def admin():
    return User(id="u-4", username="admin", name="Ada Admin", role=Role.ADMINISTRATOR)


@pytest.fixture
def make_draft():
    """Factory for a valid bank-transfer draft due one day after NOW."""
    def factory(**overrides) -> RequestDraft:
        fields = dict(
            raised_by="Dana Desk",
            vendor_name="Acme",
            bill_number="INV-100",
            amount=Decimal("5000"),
            account_number="001122334455",
            account_number_confirm="001122334455",
            ifsc="HDFC0000123",
            payment_deadline=NOW + timedelta(days=1),
        )
        fields.update(overrides)
        return RequestDraft(**fields)
    return factory


@pytest.fixture
def make_record():
    """Factory for a stored request record, bypassing screening."""
    counter = {"n": 0}

    def factory(**overrides) -> PaymentRequestRecord:
        counter["n"] += 1
        fields = dict(
            id=f"PAY-TEST{counter['n']:08d}",
            raised_by="Dana Desk",
            submitted_at=NOW,
            vendor_name="Acme",
            bill_number="INV-100",
            amount=Decimal("5000"),
            payment_deadline=NOW + timedelta(days=1),
            cutoff_status=CutoffStatus.WITHIN,
            risk=RiskLevel.LOW,
            status=RequestStatus.NEW,
        )
        fields.update(overrides)
        return PaymentRequestRecord(**fields)
    return factory


@pytest.fixture
def app(db_engine):
    """Store application bound to the per-test database."""
    application = create_app(bind=db_engine)
    TestingSessionLocal = sessionmaker(bind=db_engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def store_transport(app):
    return SwitchableTransport(app)
