"""Pytest configuration and fixtures."""

import os

# The application engine is built at import time; keep it off the dev database.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pos_promotions.core.rate_limit import limiter
from pos_promotions.core.rbac import UserRole
from pos_promotions.core.security import create_access_token, get_password_hash
from pos_promotions.core.timeutils import utc_now
from pos_promotions.db.base import Base
from pos_promotions.db.session import build_engine, get_db
from pos_promotions.main import app
from pos_promotions.models import Customer, Invoice, InvoiceStatus, Promotion, User
from pos_promotions.services.promotion_service import PromotionService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite://"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = build_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


# ---- Clock ----

@pytest.fixture
def now() -> datetime:
    """A fixed "now" (naive UTC, whole seconds) shared by service and data."""
    return utc_now().replace(microsecond=0)


@pytest.fixture
def service(db_session: Session, now: datetime) -> PromotionService:
    """Promotion service pinned to the ``now`` fixture."""
    return PromotionService(db_session, clock=lambda: now)


# ---- Users ----

def _make_user(db: Session, email: str, role: UserRole, name: str) -> User:
    user = User(
        email=email,
        password_hash=get_password_hash("testpass123"),
        role=role,
        name=name,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _headers_for(user: User) -> dict:
    token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role.value}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def test_user(db_session: Session) -> User:
    """A manager: may manage promotions."""
    return _make_user(db_session, "manager@bistro.vn", UserRole.MANAGER, "Test Manager")


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Manager authentication headers."""
    return _headers_for(test_user)


@pytest.fixture
def staff_user(db_session: Session) -> User:
    """A cashier: may read promotions and apply them to invoices."""
    return _make_user(db_session, "cashier@bistro.vn", UserRole.STAFF, "Test Cashier")


@pytest.fixture
def staff_headers(staff_user: User) -> dict:
    """Staff authentication headers."""
    return _headers_for(staff_user)


# ---- Domain data ----

@pytest.fixture
def make_promotion(db_session: Session, now: datetime) -> Callable[..., Promotion]:
    """Factory for promotions, usable at ``now`` unless overridden."""
    def _make(**overrides) -> Promotion:
        fields = dict(
            name="Ten percent off",
            code="SALE10",
            discount_percent=Decimal("10"),
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=30),
            min_order_amount=Decimal("0"),
            active=True,
        )
        fields.update(overrides)
        if "discount_amount" in overrides and "discount_percent" not in overrides:
            fields["discount_percent"] = None
        promotion = Promotion(**fields)
        db_session.add(promotion)
        db_session.commit()
        db_session.refresh(promotion)
        return promotion
    return _make


@pytest.fixture
def promotion(make_promotion) -> Promotion:
    """SALE10: 10% off capped at 50,000 for orders from 100,000."""
    return make_promotion(
        max_discount_amount=Decimal("50000"),
        min_order_amount=Decimal("100000"),
    )


@pytest.fixture
def make_invoice(db_session: Session) -> Callable[..., Invoice]:
    """Factory for pending invoices."""
    counter = {"order_id": 1000}

    def _make(amount: str = "1000000", **overrides) -> Invoice:
        counter["order_id"] += 1
        fields = dict(
            order_id=counter["order_id"],
            amount=Decimal(amount),
            status=InvoiceStatus.PENDING,
        )
        fields.update(overrides)
        invoice = Invoice(**fields)
        db_session.add(invoice)
        db_session.commit()
        db_session.refresh(invoice)
        return invoice
    return _make


@pytest.fixture
def customer(db_session: Session) -> Customer:
    """A known customer with a phone number."""
    c = Customer(name="Nguyen Van An", phone="0901234567", email="an@bistro.vn")
    db_session.add(c)
    db_session.commit()
    db_session.refresh(c)
    return c
