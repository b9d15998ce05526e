"""
Extraction of subscription data from Stripe objects.

Raw Stripe objects are validated into the payload union from
app.schemas.billing, then mapped into ExtractedSubscriptionData. Webhook
payloads may be stale by the time they are processed, so callers normally
use fetch_subscription() to re-read the authoritative object from Stripe.
"""
import logging
from datetime import datetime
from typing import Any, Optional, Tuple

from app.core.clock import from_unix_timestamp
from app.core.errors import ValidationError
from app.core.logging_config import mask_id
from app.schemas.billing import (
    ExtractedSubscriptionData,
    StripeCheckoutSessionPayload,
    StripeRef,
    StripeSubscriptionPayload,
    parse_subscription,
    ref_id,
)
from app.services.status_mapper import map_external_status
from app.services.stripe_service import StripeGateway

logger = logging.getLogger(__name__)


def validate_subscription_id(subscription_id: Optional[str]) -> str:
    if not subscription_id or not subscription_id.startswith("sub_"):
        raise ValidationError("Invalid subscription ID format", subscription_id=mask_id(subscription_id))
    return subscription_id


def validate_customer_id(customer_id: Optional[str]) -> str:
    if not customer_id or not customer_id.startswith("cus_"):
        raise ValidationError("Invalid customer ID format", customer_id=mask_id(customer_id))
    return customer_id


def extract_customer_id(customer: Optional[StripeRef]) -> str:
    """Customer ID from a bare ID or an expanded customer object."""
    if not customer:
        raise ValidationError("Customer information is missing")
    return validate_customer_id(ref_id(customer))


def extract_period(payload: StripeSubscriptionPayload) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Current billing period (start, end).

    Older API versions expose the period on the subscription itself; newer
    ones only on each subscription item, so fall back to the first item.
    """
    if payload.current_period_end:
        return (
            from_unix_timestamp(payload.current_period_start),
            from_unix_timestamp(payload.current_period_end),
        )

    item_data = (payload.items or {}).get("data") or []
    if item_data:
        first_item = item_data[0] or {}
        return (
            from_unix_timestamp(first_item.get("current_period_start")),
            from_unix_timestamp(first_item.get("current_period_end")),
        )

    return None, None


def expanded_customer_email(customer: Optional[StripeRef]) -> Optional[str]:
    if isinstance(customer, dict):
        return customer.get("email")
    return None


def extract_from_subscription(payload: StripeSubscriptionPayload) -> ExtractedSubscriptionData:
    """Map a validated subscription payload to store fields."""
    subscription_id = validate_subscription_id(payload.id)
    customer_id = extract_customer_id(payload.customer)
    period_start, period_end = extract_period(payload)

    return ExtractedSubscriptionData(
        stripe_subscription_id=subscription_id,
        stripe_customer_id=customer_id,
        status=map_external_status(payload.status),
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=bool(payload.cancel_at_period_end),
        canceled_at=from_unix_timestamp(payload.canceled_at),
        ended_at=from_unix_timestamp(payload.ended_at),
        trial_start=from_unix_timestamp(payload.trial_start),
        trial_end=from_unix_timestamp(payload.trial_end),
        latest_invoice_id=ref_id(payload.latest_invoice),
        created_at=from_unix_timestamp(payload.created),
        customer_email=expanded_customer_email(payload.customer),
    )


class SubscriptionExtractor:
    """Extraction steps that need to call Stripe (re-fetch, customer lookup)."""

    def __init__(self, gateway: StripeGateway):
        self.gateway = gateway

    def fetch_subscription(self, subscription_id: str) -> ExtractedSubscriptionData:
        """Re-fetch a subscription from Stripe and extract it."""
        validate_subscription_id(subscription_id)
        raw = self.gateway.retrieve_subscription(subscription_id)
        return extract_from_subscription(parse_subscription(raw))

    def fetch_for_checkout_session(self, session: StripeCheckoutSessionPayload) -> ExtractedSubscriptionData:
        """
        Complete subscription data for a checkout session.

        Checkout payloads lack the billing period, so the linked subscription
        is always re-fetched. The session email wins over the customer email.
        """
        subscription_id = session.subscription_id
        if not subscription_id:
            raise ValidationError(
                "Checkout session does not have associated subscription",
                session_id=mask_id(session.id),
            )

        data = self.fetch_subscription(subscription_id)
        if session.email:
            data = data.with_changes(customer_email=session.email)
        return data

    def get_customer_email(self, customer: Optional[StripeRef]) -> Optional[str]:
        """
        Email of a Stripe customer, retrieving the customer when only an ID is known.

        Returns None if the customer has no email on file.
        """
        email = expanded_customer_email(customer)
        if email:
            return email

        customer_id = extract_customer_id(customer)
        customer_obj: Any = self.gateway.retrieve_customer(customer_id)
        if customer_obj.get("deleted"):
            raise ValidationError("Stripe customer was deleted", customer_id=mask_id(customer_id))

        email = customer_obj.get("email")
        if not email:
            logger.warning(f"Stripe customer has no email: customer_id={mask_id(customer_id)}")
        return email
