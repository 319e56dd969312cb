"""
Shared fixtures: in-memory database, isolated blob store and a recording notifier
"""

import os

# Must be set before the routers build their limiters
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.auth.auth_handler import Identity, auth_handler, CUSTOMER, LABTECH, ADMIN
from app.models.lab_test import LabTest
from app.schemas.order import CheckoutRequest
from app.services.cart_service import CartService
from app.services.order_service import OrderService
from app.services.blob_store import LocalBlobStore, get_blob_store
from app.services.notification_service import get_notifier
from main import app

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingNotifier:
    """Collects notifications instead of sending email"""

    def __init__(self):
        self.sent = []

    def notify(self, recipient_email, kind, parameters):
        self.sent.append((recipient_email, kind, parameters))

    def kinds(self):
        return [kind for _, kind, _ in self.sent]


def auth_headers(identity: Identity) -> dict:
    return {"Authorization": f"Bearer {auth_handler.create_identity_token(identity)}"}


@pytest.fixture
def db_session():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(root_dir=str(tmp_path / "uploads"), public_base_url="http://testserver")


@pytest.fixture
def client(db_session, blob_store, notifier):
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer():
    return Identity(id="101", email="alice@example.com", role=CUSTOMER, username="alice")


@pytest.fixture
def other_customer():
    return Identity(id="202", email="bob@example.com", role=CUSTOMER, username="bob")


@pytest.fixture
def labtech():
    return Identity(id="9", email="tech@lab.example.com", role=LABTECH, username="tech")


@pytest.fixture
def admin():
    return Identity(id="1", email="admin@lab.example.com", role=ADMIN, username="admin")


@pytest.fixture
def catalog(db_session):
    """Two active tests and one retired test"""
    tests = [
        LabTest(name="Complete Blood Count", lab="City Diagnostics", price=300, category="Blood"),
        LabTest(name="Lipid Profile", lab="Metro Labs", price=500, category="Heart"),
        LabTest(name="Retired Panel", lab="City Diagnostics", price=50, is_active=False),
    ]
    db_session.add_all(tests)
    db_session.commit()
    for test in tests:
        db_session.refresh(test)
    return tests


def checkout_payload(date="2030-01-10", window="08:00-09:00", area="560001", payment_method="COD", **patient):
    """Body for POST /orders/checkout; patient fields override the defaults"""
    patient_info = {"name": "A", "relation": "self"}
    patient_info.update(patient)
    return {
        "patient_info": patient_info,
        "appointment": {"date": date, "time_window": window, "service_area": area},
        "payment_method": payment_method,
    }


@pytest.fixture
def make_order(db_session, catalog, notifier):
    """Place an order through the checkout service; kwargs go to checkout_payload"""
    def _make(identity, test=None, **kwargs):
        CartService(db_session).add_test(identity.id, (test or catalog[0]).id)
        request = CheckoutRequest(**checkout_payload(**kwargs))
        return OrderService(db_session, notifier).checkout(identity, request)
    return _make
