"""
Unit tests for the Stripe gateway error translation and webhook verification.
"""
import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe

from app.core.errors import ExternalServiceError, ValidationError
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.schemas.billing import parse_subscription
from app.services.billing_event_handlers import dispatch_event
from app.services.stripe_service import StripeGateway
from app.services.subscription_sync_service import SubscriptionSyncService

from conftest import stripe_subscription

WEBHOOK_SECRET = "whsec_unit_test"


def client_with(retrieve):
    return SimpleNamespace(
        subscriptions=SimpleNamespace(retrieve=retrieve),
        customers=SimpleNamespace(retrieve=retrieve),
    )


def sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def signed_event(event_type, obj):
    payload = json.dumps({
        "id": "evt_unit",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })
    return payload.encode("utf-8"), sign(payload)


def sdk_object(obj):
    """Stripe SDK object built by the real client from a signed event."""
    payload, signature = signed_event("customer.subscription.updated", obj)
    event = stripe.StripeClient("sk_test_unit").construct_event(payload, signature, WEBHOOK_SECRET)
    return event["data"]["object"]


def test_retrieve_returns_stripe_object():
    gateway = StripeGateway(client_with(lambda object_id: {"id": object_id, "object": "subscription"}))
    assert gateway.retrieve_subscription("sub_abc")["id"] == "sub_abc"


def test_invalid_request_maps_to_validation_error():
    def retrieve(object_id):
        raise stripe.InvalidRequestError(f"No such subscription: '{object_id}'", "id", code="resource_missing")

    gateway = StripeGateway(client_with(retrieve))

    with pytest.raises(ValidationError) as exc_info:
        gateway.retrieve_subscription("sub_missing")
    assert exc_info.value.retryable is False


def test_connection_error_maps_to_external_service_error():
    def retrieve(object_id):
        raise stripe.APIConnectionError("Network unreachable")

    gateway = StripeGateway(client_with(retrieve))

    with pytest.raises(ExternalServiceError) as exc_info:
        gateway.retrieve_customer("cus_abc")
    assert exc_info.value.retryable is True


def test_unconfigured_gateway_raises():
    gateway = StripeGateway(None)
    with pytest.raises(ExternalServiceError):
        gateway.retrieve_subscription("sub_abc")


def test_construct_event_verifies_signature():
    gateway = StripeGateway(stripe.StripeClient("sk_test_unit"), WEBHOOK_SECRET)
    payload = json.dumps({
        "id": "evt_unit",
        "object": "event",
        "type": "invoice.paid",
        "data": {"object": {"id": "in_unit", "object": "invoice"}},
    })

    event = gateway.construct_event(payload.encode("utf-8"), sign(payload))

    assert event["type"] == "invoice.paid"
    assert event["data"]["object"]["id"] == "in_unit"


def test_construct_event_rejects_bad_signature():
    gateway = StripeGateway(stripe.StripeClient("sk_test_unit"), WEBHOOK_SECRET)
    payload = json.dumps({"id": "evt_unit", "object": "event", "type": "invoice.paid"})

    with pytest.raises(ValidationError):
        gateway.construct_event(payload.encode("utf-8"), sign(payload, secret="whsec_other"))


def test_construct_event_requires_secret_and_header():
    with pytest.raises(ValidationError):
        StripeGateway(stripe.StripeClient("sk_test_unit"), None).construct_event(b"{}", "t=1,v1=abc")
    with pytest.raises(ValidationError):
        StripeGateway(stripe.StripeClient("sk_test_unit"), WEBHOOK_SECRET).construct_event(b"{}", None)


def test_retrieved_sdk_object_becomes_plain_dict():
    gateway = StripeGateway(client_with(lambda object_id: sdk_object(stripe_subscription(subscription_id=object_id))))

    subscription = gateway.retrieve_subscription("sub_sdk1")

    assert type(subscription) is dict
    assert type(subscription["items"]) is dict
    assert parse_subscription(subscription).id == "sub_sdk1"


def test_retrieved_sdk_customer_supports_dict_access():
    gateway = StripeGateway(client_with(lambda object_id: sdk_object({
        "id": object_id,
        "object": "customer",
        "email": "member@example.com",
    })))

    customer = gateway.retrieve_customer("cus_sdk1")

    assert customer.get("email") == "member@example.com"
    assert customer.get("deleted") is None


def test_verified_event_dispatches_through_handlers(db, test_user):
    db.add(Subscription(
        user_id=test_user.id,
        stripe_subscription_id="sub_test123",
        stripe_customer_id="cus_test123",
        status=SubscriptionStatus.ACTIVE,
    ))
    db.commit()
    gateway = StripeGateway(stripe.StripeClient("sk_test_unit"), WEBHOOK_SECRET)
    payload, signature = signed_event("customer.subscription.deleted", stripe_subscription(status="canceled"))

    event = gateway.construct_event(payload, signature)
    handled = dispatch_event(event, db, SubscriptionSyncService(gateway))

    assert type(event) is dict
    assert handled is True
    db.expire_all()
    assert db.query(Subscription).one().status == SubscriptionStatus.CANCELED
