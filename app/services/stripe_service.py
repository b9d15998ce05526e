"""
Stripe gateway: the single point where the billing engine talks to Stripe.

The gateway wraps a constructed `stripe.StripeClient`. One instance is
created at application startup and injected into the services that need it.
"""
import logging
from typing import Any, Optional

import stripe
from app.core import config
from app.core.errors import ExternalServiceError, ValidationError
from app.core.logging_config import mask_id

logger = logging.getLogger(__name__)


def to_plain_data(value: Any) -> Any:
    """
    Convert Stripe SDK objects into plain dicts and lists, recursively.

    StripeObject is not a dict in current SDK releases, so nothing past the
    gateway sees SDK types.
    """
    if isinstance(value, stripe.StripeObject):
        value = value.to_dict()
    if isinstance(value, dict):
        return {key: to_plain_data(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_plain_data(item) for item in value]
    return value


class StripeGateway:
    """Retrieve-only access to Stripe objects plus webhook verification."""

    def __init__(self, client: Optional[stripe.StripeClient], webhook_secret: Optional[str] = None):
        self.client = client
        self.webhook_secret = webhook_secret

    @classmethod
    def from_config(cls) -> "StripeGateway":
        """Build a gateway from STRIPE_* environment settings."""
        if not config.STRIPE_SECRET_KEY:
            logger.warning("STRIPE_SECRET_KEY not configured - Stripe features disabled")
            return cls(None, config.STRIPE_WEBHOOK_SECRET)

        client = stripe.StripeClient(
            config.STRIPE_SECRET_KEY,
            stripe_version=config.STRIPE_API_VERSION,
        )
        return cls(client, config.STRIPE_WEBHOOK_SECRET)

    def _require_client(self) -> stripe.StripeClient:
        if self.client is None:
            raise ExternalServiceError("Stripe not configured - STRIPE_SECRET_KEY required")
        return self.client

    def _call(self, operation: str, object_id: str, fn):
        """Run a Stripe call, translating SDK errors into billing errors."""
        try:
            return to_plain_data(fn())
        except stripe.InvalidRequestError as e:
            logger.warning(f"Stripe rejected {operation}: id={mask_id(object_id)}, code={e.code}")
            raise ValidationError(
                f"Stripe rejected {operation}: {e.user_message or str(e)}",
                operation=operation,
                object_id=mask_id(object_id),
            ) from e
        except stripe.StripeError as e:
            logger.error(f"Stripe error during {operation}: id={mask_id(object_id)}, error={e}")
            raise ExternalServiceError(
                f"Stripe unavailable during {operation}",
                operation=operation,
                object_id=mask_id(object_id),
            ) from e

    def retrieve_subscription(self, subscription_id: str) -> Any:
        client = self._require_client()
        return self._call(
            "retrieve_subscription",
            subscription_id,
            lambda: client.subscriptions.retrieve(subscription_id),
        )

    def retrieve_customer(self, customer_id: str) -> Any:
        client = self._require_client()
        return self._call(
            "retrieve_customer",
            customer_id,
            lambda: client.customers.retrieve(customer_id),
        )

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw request body bytes
            signature: Stripe-Signature header value

        Returns:
            Verified event as a plain dict

        Raises:
            ValidationError: If the signature or payload is invalid
        """
        if not self.webhook_secret:
            raise ValidationError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature:
            raise ValidationError("Missing Stripe-Signature header")

        client = self._require_client()
        try:
            event = client.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise ValidationError(f"Invalid webhook payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            logger.error(f"Webhook signature verification failed: {e}")
            raise ValidationError(f"Invalid signature: {e}") from e

        event = to_plain_data(event)
        logger.info(f"Verified webhook event: {event['type']}, id={event['id']}")
        return event
