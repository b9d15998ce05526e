"""
Subscription sync service.

Keeps local subscription records and community roles in sync with Stripe.
Every public operation is one unit of work: the store write and the role
reconciliation commit together, or the session is rolled back and the error
re-raised so Stripe redelivers the webhook.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import BillingError, ReconciliationError, ValidationError
from app.core.logging_config import log_operation, mask_id
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.db.models.user import User
from app.schemas.billing import (
    ExtractedSubscriptionData,
    StripeCheckoutSessionPayload,
    StripeInvoicePayload,
    StripeSubscriptionPayload,
)
from app.services.access_policy import is_within_grace_period
from app.services.role_reconciler import ReconcileResult, RoleReconciler
from app.services.stripe_service import StripeGateway
from app.services.subscription_extraction import SubscriptionExtractor, extract_from_subscription
from app.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

# Failed attempts after which an invoice marks the subscription UNPAID
UNPAID_ATTEMPT_THRESHOLD = 3


class SubscriptionSyncService:

    def __init__(
        self,
        gateway: StripeGateway,
        store: Optional[SubscriptionStore] = None,
        reconciler: Optional[RoleReconciler] = None,
        extractor: Optional[SubscriptionExtractor] = None,
    ):
        self.gateway = gateway
        self.store = store or SubscriptionStore()
        self.reconciler = reconciler or RoleReconciler()
        self.extractor = extractor or SubscriptionExtractor(gateway)

    @contextmanager
    def _unit_of_work(self, db: Session, operation: str, **context: Any):
        try:
            yield
            db.commit()
        except BillingError as e:
            db.rollback()
            details = {**context, **e.context}
            log_operation(logger, operation, False, error_type=type(e).__name__, error=e.message, **details)
            raise
        except Exception as e:
            db.rollback()
            log_operation(logger, operation, False, error_type=type(e).__name__, error=str(e), **context)
            raise

    def _upsert_and_reconcile(
        self,
        db: Session,
        data: ExtractedSubscriptionData,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        record = self.store.upsert(
            db,
            data.stripe_subscription_id,
            data,
            user_id=user_id,
            email_lookup=lambda: self.extractor.get_customer_email(data.stripe_customer_id),
        )
        self.reconciler.reconcile_access(db, record.user_id, now)
        return record

    def create_or_update_subscription(
        self,
        db: Session,
        data: ExtractedSubscriptionData,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Upsert extracted subscription data and reconcile the owner's roles.

        Args:
            db: Database session
            data: Subscription fields, ideally re-fetched from Stripe
            user_id: Owning user, when already known
            now: Evaluation time for the access policy

        Returns:
            The stored subscription record
        """
        with self._unit_of_work(
            db, "create_or_update_subscription",
            subscription_id=data.stripe_subscription_id,
            customer_id=data.stripe_customer_id,
        ):
            record = self._upsert_and_reconcile(db, data, user_id=user_id, now=now)

        logger.info(
            f"Subscription synced: user_id={record.user_id}, status={record.status.value}, "
            f"subscription_id={mask_id(record.stripe_subscription_id)}"
        )
        return record

    def refresh_subscription(self, db: Session, subscription_id: str, now: Optional[datetime] = None) -> Subscription:
        """Re-fetch a subscription from Stripe, then upsert and reconcile it."""
        with self._unit_of_work(db, "refresh_subscription", subscription_id=subscription_id):
            data = self.extractor.fetch_subscription(subscription_id)
            record = self._upsert_and_reconcile(db, data, now=now)

        logger.info(
            f"Subscription refreshed: user_id={record.user_id}, status={record.status.value}, "
            f"subscription_id={mask_id(subscription_id)}"
        )
        return record

    def update_user_access(self, db: Session, user_id: int, now: Optional[datetime] = None) -> ReconcileResult:
        """Recompute and apply the user's roles from the stored subscription."""
        with self._unit_of_work(db, "update_user_access", user_id=user_id):
            result = self.reconciler.reconcile_access(db, user_id, now)
        return result

    def update_access_for_customer(
        self,
        db: Session,
        stripe_customer_id: str,
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        """
        Recompute roles for the member whose subscription belongs to a Stripe customer.

        Raises:
            ValidationError: If no stored subscription carries the customer ID
        """
        with self._unit_of_work(db, "update_access_for_customer", customer_id=mask_id(stripe_customer_id)):
            record = self.store.get_by_customer_id(db, stripe_customer_id)
            if record is None:
                raise ValidationError(
                    "No subscription found for Stripe customer",
                    customer_id=mask_id(stripe_customer_id),
                )
            result = self.reconciler.reconcile_access(db, record.user_id, now)
        return result

    def handle_subscription_cancellation(
        self,
        db: Session,
        payload: StripeSubscriptionPayload,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Mark a subscription CANCELED and revoke premium access.

        canceled_at and ended_at come from the payload when present, else now.
        """
        now = now or utcnow()
        with self._unit_of_work(db, "handle_subscription_cancellation", subscription_id=payload.id):
            data = extract_from_subscription(payload)
            data = data.with_changes(
                status=SubscriptionStatus.CANCELED,
                canceled_at=data.canceled_at or now,
                ended_at=data.ended_at or now,
            )
            record = self._upsert_and_reconcile(db, data, now=now)

        logger.info(
            f"Subscription canceled: user_id={record.user_id}, "
            f"subscription_id={mask_id(payload.id)}"
        )
        return record

    def handle_payment_failure(
        self,
        db: Session,
        invoice: StripeInvoicePayload,
        now: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """
        Record a failed invoice payment.

        The subscription becomes UNPAID once attempt_count reaches the
        threshold, PAST_DUE before that. Only status and the invoice pointer
        are written. Returns None when the invoice has no subscription.
        """
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.warning(f"invoice.payment_failed: No subscription on invoice, invoice_id={mask_id(invoice.id)}")
            return None

        attempts = invoice.attempt_count or 0
        status = SubscriptionStatus.UNPAID if attempts >= UNPAID_ATTEMPT_THRESHOLD else SubscriptionStatus.PAST_DUE

        with self._unit_of_work(
            db, "handle_payment_failure",
            subscription_id=subscription_id,
            invoice_id=invoice.id,
            attempt_count=attempts,
        ):
            record = self.store.update_payment_status(db, subscription_id, status, invoice.id)
            self.reconciler.reconcile_access(db, record.user_id, now)

        logger.info(
            f"Invoice payment failed: user_id={record.user_id}, status={status.value}, "
            f"attempt_count={attempts}, subscription_id={mask_id(subscription_id)}"
        )
        return record

    def sync_subscription_from_invoice(
        self,
        db: Session,
        invoice: StripeInvoicePayload,
        now: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """
        Re-fetch the invoice's subscription and mark it ACTIVE.

        Returns None when the invoice has no subscription (one-off invoices).
        """
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.warning(f"invoice.payment_succeeded: No subscription on invoice, invoice_id={mask_id(invoice.id)}")
            return None

        with self._unit_of_work(
            db, "sync_subscription_from_invoice",
            subscription_id=subscription_id,
            invoice_id=invoice.id,
        ):
            data = self.extractor.fetch_subscription(subscription_id).with_changes(
                status=SubscriptionStatus.ACTIVE,
                latest_invoice_id=invoice.id,
            )
            record = self._upsert_and_reconcile(db, data, now=now)

        logger.info(
            f"Invoice payment succeeded: user_id={record.user_id}, "
            f"subscription_id={mask_id(subscription_id)}"
        )
        return record

    def _resolve_checkout_user(self, db: Session, session: StripeCheckoutSessionPayload) -> User:
        metadata = session.metadata or {}
        user_id_str = metadata.get("user_id")
        email = session.email

        if not user_id_str and not email:
            raise ValidationError(
                "Cannot identify user from checkout session",
                session_id=mask_id(session.id),
            )

        if user_id_str:
            try:
                user_id = int(user_id_str)
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    "Invalid user_id in checkout session metadata",
                    session_id=mask_id(session.id),
                ) from e
            user = db.query(User).filter(User.id == user_id).first()
        else:
            user = db.query(User).filter(func.lower(User.email) == email.lower()).first()

        if not user:
            raise ReconciliationError(
                "User not found for checkout session",
                session_id=mask_id(session.id),
                customer_id=mask_id(session.customer if isinstance(session.customer, str) else None),
            )
        return user

    def handle_checkout_session_completed(
        self,
        db: Session,
        session: StripeCheckoutSessionPayload,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Handle a completed checkout.

        The user is resolved from session metadata or email first; the linked
        subscription is then re-fetched from Stripe, since checkout payloads
        lack the billing period.

        Raises:
            ValidationError: No user identifier, or no linked subscription
            ReconciliationError: The identified user does not exist
        """
        with self._unit_of_work(db, "handle_checkout_session_completed", session_id=session.id):
            user = self._resolve_checkout_user(db, session)
            data = self.extractor.fetch_for_checkout_session(session)
            record = self._upsert_and_reconcile(db, data, user_id=user.id, now=now)

        logger.info(
            f"Checkout completed: user_id={record.user_id}, status={record.status.value}, "
            f"subscription_id={mask_id(record.stripe_subscription_id)}"
        )
        return record

    def reconcile_lapsed_grace_periods(self, db: Session, now: Optional[datetime] = None) -> List[ReconcileResult]:
        """
        Re-run reconciliation for PAST_DUE records whose grace window has lapsed.

        Access for those users flips off without any new notification. Each
        user is reconciled in its own unit of work.
        """
        now = now or utcnow()
        lapsed = [
            record.user_id
            for record in self.store.list_past_due(db)
            if not is_within_grace_period(record, now)
        ]

        results = []
        for user_id in lapsed:
            results.append(self.update_user_access(db, user_id, now))

        revoked = sum(1 for result in results if result.changed)
        logger.info(f"Grace period sweep: lapsed={len(lapsed)}, users_changed={revoked}")
        return results
