"""
Shared fixtures: in-memory database, fake carrier/gateway/mail clients and a TestClient
with all of them wired in through dependency overrides.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ADMIN_EMAIL"] = "admin@casebuddy.test"
os.environ["DELIVERY_SYNC_INTERVAL_SEC"] = "0"

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from app.database import Base, get_db
from app.models import AdminUser, Order, Shipment
from app.services.cashfree_service import get_cashfree_client
from app.services.email_service import get_mailer
from app.services.shiprocket_service import get_shiprocket_client

SQLALCHEMY_DATABASE_URL = "sqlite://"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeMailer:
    """Records sends instead of talking SMTP. Set fail=True to make every send raise."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, to_email, subject, html_body, from_name="CaseBuddy"):
        if self.fail:
            raise ConnectionError("SMTP connection refused")
        self.sent.append({"to": to_email, "subject": subject, "html": html_body, "from_name": from_name})

    def subjects_to(self, to_email):
        return [m["subject"] for m in self.sent if m["to"] == to_email]


class FakeShiprocket:
    """track_awb returns the canned response for the AWB, or raises it if it is an exception."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    async def track_awb(self, awb):
        self.calls.append(awb)
        result = self.responses.get(awb)
        if isinstance(result, Exception):
            raise result
        if result is None:
            return {"tracking_data": {"track_status": 0}}
        return result


class FakeCashfree:
    def __init__(self, order_status="PAID", error=None):
        self.order_status = order_status
        self.error = error
        self.calls = []

    async def get_order(self, gateway_order_id):
        self.calls.append(gateway_order_id)
        if self.error is not None:
            raise self.error
        return {"order_id": gateway_order_id, "order_status": self.order_status}


def tracking_response(current_status=None, courier_name=None, track_url=None, activities=None, shipment_status=None):
    """Shape of GET /v1/external/courier/track/awb/{awb}."""
    track = {}
    if current_status is not None:
        track["current_status"] = current_status
    if courier_name is not None:
        track["courier_name"] = courier_name
    tracking_data = {
        "track_status": 1,
        "shipment_track": [track] if track else [],
        "shipment_track_activities": activities or [],
    }
    if track_url is not None:
        tracking_data["track_url"] = track_url
    if shipment_status is not None:
        tracking_data["shipment_status"] = shipment_status
    return {"tracking_data": tracking_data}


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def shiprocket():
    return FakeShiprocket()


@pytest.fixture
def cashfree():
    return FakeCashfree()


@pytest.fixture
def client(db_session, mailer, shiprocket, cashfree):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_shiprocket_client] = lambda: shiprocket
    app.dependency_overrides[get_cashfree_client] = lambda: cashfree
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


_order_seq = [0]


def make_order(db, **overrides):
    _order_seq[0] += 1
    fields = dict(
        order_number=f"CB{1712345678000 + _order_seq[0]}",
        customer_name="Asha Verma",
        customer_email="asha@example.com",
        customer_mobile="9876543210",
        shipping_address_line1="12 MG Road",
        shipping_city="Bengaluru",
        shipping_state="Karnataka",
        shipping_pincode="560001",
        product_id=7,
        product_name="Matte Black Case",
        phone_model="iPhone 15",
        design_name="Minimal",
        quantity=2,
        unit_price=Decimal("499.00"),
        subtotal=Decimal("998.00"),
        shipping_cost=Decimal("0.00"),
        total_amount=Decimal("998.00"),
        payment_status="paid",
        order_status="confirmed",
    )
    fields.update(overrides)
    order = Order(**fields)
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def make_shipment(db, order, updated_at=None, **overrides):
    fields = dict(
        order_id=order.id,
        provider="shiprocket",
        shiprocket_awb=f"AWB{order.id:05d}",
        status=None,
        updated_at=updated_at or datetime(2020, 1, 1) + timedelta(minutes=order.id),
    )
    fields.update(overrides)
    shipment = Shipment(**fields)
    db.add(shipment)
    db.commit()
    db.refresh(shipment)
    return shipment


@pytest.fixture
def order_factory(db_session):
    return lambda **kw: make_order(db_session, **kw)


@pytest.fixture
def shipment_factory(db_session):
    return lambda order, **kw: make_shipment(db_session, order, **kw)


@pytest.fixture
def admin_user(db_session):
    admin = AdminUser(username="ops", email="ops@casebuddy.test", full_name="Ops", role="admin", is_active=True)
    db_session.add(admin)
    db_session.commit()
    db_session.refresh(admin)
    return admin
