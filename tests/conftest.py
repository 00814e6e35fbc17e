"""Pytest fixtures for testing"""

import pytest
from datetime import datetime, timedelta
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from change_gateway.api.main import create_app
from change_gateway.api import dependencies
from change_gateway.infrastructure.database.models import Base
from change_gateway.infrastructure.database.session import get_db
from change_gateway.domain.exceptions import CheckoutGatewayError, NotificationGatewayError, OrderNotFound, OrderStoreError
from change_gateway.domain.models import (
    AddressSnapshot,
    CheckoutSession,
    Customer,
    OrderRecord,
    PackageSnapshot,
    SessionStatus,
)
from change_gateway.services.controller import ChangeRequestController


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

ORIGINAL_ADDRESS = AddressSnapshot(
    name="Ada Lovelace", street1="12 Analytical Way", city="Austin", state="TX", zip="78701"
)
NEW_ADDRESS = AddressSnapshot(
    name="Ada Lovelace", street1="99 Engine St", city="Denver", state="CO", zip="80202"
)
ORIGINAL_PACKAGE = PackageSnapshot(weight_oz=16.0, length_in=10.0, width_in=8.0, height_in=4.0)
BIGGER_PACKAGE = PackageSnapshot(weight_oz=48.0, length_in=14.0, width_in=12.0, height_in=8.0)


class Clock:
    """Controllable stand-in for utcnow"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeCheckout:
    def __init__(self):
        self.created = []
        self.cancelled = []
        self.settled = set()
        self.fail_create = False
        self.fail_status = False

    async def create_session(self, amount_cents, order_ref, description, customer_email=None):
        if self.fail_create:
            raise CheckoutGatewayError("checkout create_session failed: 503")
        ref = f"sess_{len(self.created) + 1}"
        self.created.append({"session_ref": ref, "amount_cents": amount_cents, "order_ref": order_ref})
        return CheckoutSession(session_ref=ref, payment_url=f"https://pay.test/{ref}", session_id=f"cs_{ref}")

    async def get_session_status(self, session_ref):
        if self.fail_status:
            raise CheckoutGatewayError("checkout get_session_status timed out after 5.0s")
        if session_ref in self.settled:
            return SessionStatus(settled=True, settled_order_ref=f"pay_{session_ref}")
        return SessionStatus(settled=False)

    async def cancel_session(self, session_ref):
        self.cancelled.append(session_ref)


class FakeNotifications:
    def __init__(self):
        self.invoices = []
        self.reminders = []
        self.fail = False

    async def send_invoice_email(self, recipient, payment_url, context):
        if self.fail:
            raise NotificationGatewayError("notification send_invoice failed: 502")
        self.invoices.append({"to": recipient.email, "payment_url": payment_url, "context": context})

    async def send_reminder_email(self, recipient, payment_url, context):
        if self.fail:
            raise NotificationGatewayError("notification send_reminder failed: 502")
        self.reminders.append({"to": recipient.email, "payment_url": payment_url, "context": context})


class FakeOrderStore:
    def __init__(self):
        self.orders = {}
        self.blocked = {}
        self.fail_writes = False

    def add(self, order_ref, address=ORIGINAL_ADDRESS, package=ORIGINAL_PACKAGE):
        self.orders[order_ref] = OrderRecord(
            order_ref=order_ref,
            customer=Customer(name="Ada Lovelace", email="ada@example.com"),
            address=address,
            package=package,
            shipping_blocked=False,
        )
        self.blocked[order_ref] = False

    async def get_order(self, order_ref):
        if order_ref not in self.orders:
            raise OrderNotFound(order_ref)
        order = self.orders[order_ref]
        return OrderRecord(
            order_ref=order.order_ref,
            customer=order.customer,
            address=order.address,
            package=order.package,
            shipping_blocked=self.blocked[order_ref],
        )

    async def set_address(self, order_ref, address):
        if self.fail_writes:
            raise OrderStoreError("order_store set_address failed: 503")
        self.orders[order_ref].address = address

    async def set_package(self, order_ref, package):
        if self.fail_writes:
            raise OrderStoreError("order_store set_package failed: 503")
        self.orders[order_ref].package = package

    async def set_shipping_blocked(self, order_ref, blocked):
        self.blocked[order_ref] = blocked


class FakeRating:
    def __init__(self):
        self.payload = {
            "RatedShipment": [
                {"Service": {"Code": "12", "Description": "3 Day Select"}, "TotalCharges": {"MonetaryValue": "31.10"}},
                {"Service": {"Code": "03", "Description": "Ground"}, "TotalCharges": {"MonetaryValue": "18.00"}},
            ]
        }
        self.calls = []

    async def get_rates(self, order_ref, address, package):
        self.calls.append({"order_ref": order_ref, "address": address, "package": package})
        return self.payload


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
    """Fresh sessions on the test database, as the workers open them"""
    return TestingSessionLocal


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2024, 3, 1, 12, 0, 0))


@pytest.fixture
def checkout() -> FakeCheckout:
    return FakeCheckout()


@pytest.fixture
def notifications() -> FakeNotifications:
    return FakeNotifications()


@pytest.fixture
def orders() -> FakeOrderStore:
    store = FakeOrderStore()
    store.add("ord_1001")
    store.add("ord_1002")
    return store


@pytest.fixture
def rating() -> FakeRating:
    return FakeRating()


@pytest.fixture
def new_address() -> AddressSnapshot:
    return NEW_ADDRESS


@pytest.fixture
def bigger_package() -> PackageSnapshot:
    return BIGGER_PACKAGE


@pytest.fixture
def controller(db, checkout, notifications, orders, rating, clock) -> ChangeRequestController:
    return ChangeRequestController(db, checkout, notifications, orders, rating, clock=clock)


@pytest.fixture
def client(db: Session, checkout, notifications, orders, rating, clock) -> TestClient:
    """Create FastAPI test client with test database and fake collaborators"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_checkout_client] = lambda: checkout
    app.dependency_overrides[dependencies.get_notification_client] = lambda: notifications
    app.dependency_overrides[dependencies.get_order_store_client] = lambda: orders
    app.dependency_overrides[dependencies.get_rating_client] = lambda: rating
    app.dependency_overrides[dependencies.get_clock] = lambda: clock
    return TestClient(app)
