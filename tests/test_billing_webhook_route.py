"""
Integration tests for POST /billing/webhook.
"""
import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_stripe_gateway
from app.core.auth_dependency import get_db
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.main import app
from app.services.role_reconciler import PREMIUM_ROLE

from conftest import (
    NOW,
    TestSessionLocal,
    join,
    make_server,
    role_names,
    stripe_checkout_session,
    stripe_invoice,
    stripe_subscription,
)


def override_get_db():
    """Override get_db dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def post_event(client, event_type, obj, signature="valid"):
    body = json.dumps({"id": "evt_test", "type": event_type, "data": {"object": obj}})
    return client.post(
        "/billing/webhook",
        content=body,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


def test_checkout_event_grants_premium(client, db, gateway, test_user):
    server = make_server(db)
    join(db, test_user, server)
    gateway.add_subscription(stripe_subscription(period_end=NOW + timedelta(days=3650)))

    response = post_event(client, "checkout.session.completed", stripe_checkout_session())

    assert response.status_code == 200
    assert response.json()["status"] == "success"
    assert role_names(db, test_user) == {server.id: PREMIUM_ROLE}


def test_invalid_signature_rejected(client, gateway, test_user):
    response = post_event(client, "checkout.session.completed", stripe_checkout_session(), signature="forged")

    assert response.status_code == 400
    assert gateway.calls == []


def test_missing_signature_rejected(client):
    response = client.post("/billing/webhook", content=b"{}")
    assert response.status_code == 400


def test_unhandled_event_acknowledged(client):
    response = post_event(client, "customer.created", {"id": "cus_test123", "object": "customer"})

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


def test_unknown_user_returns_500(client, db, gateway, test_user):
    gateway.add_subscription(stripe_subscription())

    response = post_event(
        client, "checkout.session.completed",
        stripe_checkout_session(email="stranger@example.com"),
    )

    assert response.status_code == 500
    assert db.query(Subscription).count() == 0


def test_malformed_payload_returns_400(client, test_user):
    response = post_event(client, "invoice.payment_failed", {"id": "in_test", "object": "subscription"})
    assert response.status_code == 400


def test_stripe_outage_returns_503(client, gateway, test_user):
    gateway.unavailable = True

    response = post_event(client, "customer.subscription.updated", stripe_subscription())

    assert response.status_code == 503


def test_redelivered_event_is_idempotent(client, db, gateway, test_user):
    gateway.add_customer("cus_test123", test_user.email)
    gateway.add_subscription(stripe_subscription(status="trialing"))

    first = post_event(client, "customer.subscription.updated", stripe_subscription())
    second = post_event(client, "customer.subscription.updated", stripe_subscription())

    assert first.status_code == 200
    assert second.status_code == 200
    db.expire_all()
    records = db.query(Subscription).all()
    assert len(records) == 1
    assert records[0].status == SubscriptionStatus.TRIALING


def test_payment_failed_event(client, db, gateway, test_user):
    gateway.add_customer("cus_test123", test_user.email)
    gateway.add_subscription(stripe_subscription())
    post_event(client, "customer.subscription.created", stripe_subscription())

    response = post_event(client, "invoice.payment_failed", stripe_invoice(attempt_count=2))

    assert response.status_code == 200
    db.expire_all()
    assert db.query(Subscription).one().status == SubscriptionStatus.PAST_DUE


def test_subscription_deleted_event(client, db, gateway, test_user):
    gateway.add_customer("cus_test123", test_user.email)
    gateway.add_subscription(stripe_subscription())
    post_event(client, "customer.subscription.created", stripe_subscription())

    response = post_event(client, "customer.subscription.deleted", stripe_subscription(status="canceled"))

    assert response.status_code == 200
    db.expire_all()
    record = db.query(Subscription).one()
    assert record.status == SubscriptionStatus.CANCELED
    assert record.ended_at is not None
