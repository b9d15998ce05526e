"""
Stripe webhook event handlers.

One handler per event type, each with the same shape: validate the payload,
re-fetch authoritative data where needed, upsert, reconcile roles.
"""
import logging
from typing import Any, Callable, Dict, Mapping

from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.schemas.billing import parse_checkout_session, parse_invoice, parse_subscription
from app.services.subscription_sync_service import SubscriptionSyncService

logger = logging.getLogger(__name__)


def _event_object(event_data: Mapping) -> Any:
    obj = event_data.get("object")
    if obj is None:
        raise ValidationError("Event data has no object")
    return obj


def handle_checkout_session_completed(event_data: Dict, db: Session, sync_service: SubscriptionSyncService) -> None:
    """Handle checkout.session.completed webhook event."""
    session = parse_checkout_session(_event_object(event_data))
    sync_service.handle_checkout_session_completed(db, session)


def handle_invoice_payment_succeeded(event_data: Dict, db: Session, sync_service: SubscriptionSyncService) -> None:
    """
    Handle invoice.payment_succeeded and invoice.paid webhook events.

    The subscription is re-fetched from Stripe and marked active.
    """
    invoice = parse_invoice(_event_object(event_data))
    sync_service.sync_subscription_from_invoice(db, invoice)


def handle_invoice_payment_failed(event_data: Dict, db: Session, sync_service: SubscriptionSyncService) -> None:
    """
    Handle invoice.payment_failed webhook event.

    Sets past_due, or unpaid once Stripe has retried enough times.
    """
    invoice = parse_invoice(_event_object(event_data))
    sync_service.handle_payment_failure(db, invoice)


def handle_subscription_updated(event_data: Dict, db: Session, sync_service: SubscriptionSyncService) -> None:
    """
    Handle customer.subscription.created and customer.subscription.updated.

    Payload fields may be stale by the time the event is processed, so only
    the ID is taken from the event and the subscription is re-fetched.
    """
    payload = parse_subscription(_event_object(event_data))
    sync_service.refresh_subscription(db, payload.id)


def handle_subscription_deleted(event_data: Dict, db: Session, sync_service: SubscriptionSyncService) -> None:
    """Handle customer.subscription.deleted webhook event. Revokes premium access."""
    payload = parse_subscription(_event_object(event_data))
    sync_service.handle_subscription_cancellation(db, payload)


EventHandler = Callable[[Dict, Session, SubscriptionSyncService], None]

EVENT_HANDLERS: Dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_session_completed,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.paid": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "customer.subscription.created": handle_subscription_updated,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
}


def dispatch_event(event: Mapping, db: Session, sync_service: SubscriptionSyncService) -> bool:
    """
    Route a verified Stripe event to its handler.

    Returns:
        True if the event type is handled, False if it was ignored

    Raises:
        BillingError: Propagated from the handler so the webhook responds non-2xx
    """
    event_type = event.get("type")
    event_id = event.get("id")
    handler = EVENT_HANDLERS.get(event_type)

    if handler is None:
        logger.info(f"Ignoring unhandled webhook event: type={event_type}, id={event_id}")
        return False

    logger.info(f"Processing webhook event: type={event_type}, id={event_id}")
    handler(event.get("data") or {}, db, sync_service)
    logger.info(f"Processed webhook event: type={event_type}, id={event_id}")
    return True
