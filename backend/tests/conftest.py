"""Pytest configuration and fixtures."""

import os

# Keep the application engine off the on-disk database during tests
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")

import pytest
from decimal import Decimal
from typing import Dict, Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.rbac import UserRole
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.main import app
# Import all models to ensure they're registered with Base.metadata
from app.models import *
from app.services.order_lifecycle_service import NewOrderLine, OrderLifecycleService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
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
    # Disable the rate limiter during tests to avoid flaky failures
    from app.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()


def _headers(user_id: int, email: str, role: UserRole) -> dict:
    token = create_access_token(data={"sub": str(user_id), "email": email, "role": role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> dict:
    """Authentication headers for an administrator."""
    return _headers(1, "admin@example.com", UserRole.ADMIN)


@pytest.fixture
def waiter_headers() -> dict:
    """Authentication headers for a waiter."""
    return _headers(2, "waiter@example.com", UserRole.WAITER)


@pytest.fixture
def tables(db_session: Session) -> Dict[int, Table]:
    """Three free tables keyed by number, plus an inactive table 9."""
    created = {}
    for number, capacity, active in [(1, 4, True), (2, 2, True), (3, 6, True), (9, 4, False)]:
        table = Table(number=number, capacity=capacity, active=active, status=True)
        db_session.add(table)
        created[number] = table
    db_session.commit()
    return created


@pytest.fixture
def menu_items(db_session: Session) -> Dict[str, MenuItem]:
    """Catalog with a taxed base price, a display-price-only item and an unavailable item."""
    items = {
        "steak": MenuItem(
            name="Steak",
            price=Decimal("21600"),
            base_price=Decimal("20000"),
            tax_rate=Decimal("8"),
        ),
        "soda": MenuItem(name="Soda", price=Decimal("5000")),
        "lemonade": MenuItem(
            name="Lemonade",
            price=Decimal("4500"),
            base_price=Decimal("4500"),
            tax_rate=Decimal("0"),
        ),
        "special": MenuItem(
            name="Seasonal Special",
            price=Decimal("30000"),
            base_price=Decimal("27778"),
            tax_rate=Decimal("8"),
            available=False,
        ),
    }
    db_session.add_all(items.values())
    db_session.commit()
    return items


@pytest.fixture
def sides(db_session: Session) -> Dict[str, Side]:
    created = {"fries": Side(name="Fries"), "salad": Side(name="Salad"), "rice": Side(name="Rice")}
    db_session.add_all(created.values())
    db_session.commit()
    return created


@pytest.fixture
def cooking_point(db_session: Session) -> CookingPoint:
    point = CookingPoint(name="Medium", description="Pink in the middle")
    db_session.add(point)
    db_session.commit()
    db_session.refresh(point)
    return point


@pytest.fixture
def payment_methods(db_session: Session) -> Dict[str, PaymentMethod]:
    """Cash and card, plus an inactive transfer method."""
    methods = {
        "cash": PaymentMethod(name="Cash", code=CASH_METHOD_CODE, display_order=1),
        "card": PaymentMethod(name="Card", code="CARD", display_order=2),
        "transfer": PaymentMethod(name="Transfer", code="TRANSFER", display_order=3, active=False),
    }
    db_session.add_all(methods.values())
    db_session.commit()
    return methods


@pytest.fixture
def steak_order(db_session: Session, tables, menu_items) -> Order:
    """Open order on table 1 with two steaks (subtotal 40000, tax 3200, total 43200)."""
    return OrderLifecycleService(db_session).create_order(
        table_id=tables[1].id,
        owner_id=2,
        diners_count=2,
        lines=[NewOrderLine(menu_item_id=menu_items["steak"].id, quantity=2)],
    )
