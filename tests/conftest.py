"""
Shared fixtures: in-memory SQLite database, fake Stripe gateway, factories.
"""
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.errors import ExternalServiceError, ValidationError
from app.db.base import Base
from app.db.models.community import Member, Role, Server
from app.db.models.user import User
from app.services.stripe_service import StripeGateway
import app.db.models  # noqa: F401


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

NOW = datetime(2026, 3, 1, 12, 0, 0)


def ts(value: datetime) -> int:
    """Naive UTC datetime to a Stripe epoch timestamp."""
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def stripe_subscription(
    subscription_id="sub_test123",
    customer="cus_test123",
    status="active",
    period_start=NOW - timedelta(days=1),
    period_end=NOW + timedelta(days=30),
    **extra,
):
    """Raw Stripe subscription object as returned by the API."""
    obj = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "created": ts(NOW - timedelta(days=1)),
        "current_period_start": ts(period_start) if period_start else None,
        "current_period_end": ts(period_end) if period_end else None,
        "cancel_at_period_end": False,
        "canceled_at": None,
        "ended_at": None,
        "trial_start": None,
        "trial_end": None,
        "latest_invoice": "in_test001",
        "items": {"object": "list", "data": []},
        "metadata": {},
    }
    obj.update(extra)
    return obj


def stripe_invoice(invoice_id="in_test002", subscription_id="sub_test123", customer="cus_test123", attempt_count=1):
    return {
        "id": invoice_id,
        "object": "invoice",
        "customer": customer,
        "subscription": subscription_id,
        "attempt_count": attempt_count,
        "status": "open",
    }


def stripe_checkout_session(
    session_id="cs_test123",
    subscription_id="sub_test123",
    customer="cus_test123",
    email="member@example.com",
    metadata=None,
):
    return {
        "id": session_id,
        "object": "checkout.session",
        "customer": customer,
        "customer_email": email,
        "customer_details": {"email": email} if email else None,
        "subscription": subscription_id,
        "payment_status": "paid",
        "mode": "subscription",
        "metadata": metadata or {},
    }


class FakeStripeGateway(StripeGateway):
    """In-memory stand-in for the Stripe API."""

    def __init__(self):
        super().__init__(client=None, webhook_secret="whsec_test")
        self.subscriptions = {}
        self.customers = {}
        self.unavailable = False
        self.calls = []

    def _lookup(self, store, object_id, label):
        self.calls.append((label, object_id))
        if self.unavailable:
            raise ExternalServiceError(f"Stripe unavailable during retrieve_{label}")
        if object_id not in store:
            raise ValidationError(f"Stripe rejected retrieve_{label}: No such {label}: '{object_id}'")
        return store[object_id]

    def retrieve_subscription(self, subscription_id):
        return self._lookup(self.subscriptions, subscription_id, "subscription")

    def retrieve_customer(self, customer_id):
        return self._lookup(self.customers, customer_id, "customer")

    def add_subscription(self, obj):
        self.subscriptions[obj["id"]] = obj
        return obj

    def add_customer(self, customer_id, email):
        self.customers[customer_id] = {"id": customer_id, "object": "customer", "email": email}

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise ValidationError("Invalid signature: No signatures found matching the expected signature")
        return json.loads(payload)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def test_user(db):
    """Create a test user."""
    user = User(full_name="Test Member", email="member@example.com")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_user(db, email, full_name="Another Member"):
    user = User(full_name=full_name, email=email)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_server(db, name="Study Group", owner=None):
    """Create a community with a platform-managed default `member` role."""
    server = Server(name=name, owner_id=owner.id if owner else None)
    db.add(server)
    db.flush()
    db.add(Role(server_id=server.id, name="member", color="#99AAB5", is_default=True))
    db.commit()
    db.refresh(server)
    return server


def join(db, user, server, role_name="member"):
    role = db.query(Role).filter(Role.server_id == server.id, Role.name == role_name).one()
    member = Member(user_id=user.id, server_id=server.id, role_id=role.id)
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


def role_names(db, user):
    """Role name per server ID for a user's memberships."""
    db.expire_all()
    return {
        member.server_id: member.role.name
        for member in db.query(Member).filter(Member.user_id == user.id).all()
    }
