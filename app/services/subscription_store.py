"""
Subscription record store.

Every write is an upsert keyed on stripe_subscription_id. An existing record
is fully replaced by the incoming fields; ordering between competing writes
is not compared, the last committed write wins. The store flushes but never
commits: the caller owns the transaction.
"""
import logging
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import ReconciliationError, ValidationError
from app.core.logging_config import log_operation, mask_id
from app.db.models.subscription import Subscription, SubscriptionStatus, TERMINAL_STATUSES
from app.db.models.user import User
from app.schemas.billing import ExtractedSubscriptionData

logger = logging.getLogger(__name__)

# Fields overwritten on every upsert
REPLACED_FIELDS = (
    "stripe_customer_id",
    "status",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "canceled_at",
    "ended_at",
    "trial_start",
    "trial_end",
    "latest_invoice_id",
)


class SubscriptionStore:

    def get_by_stripe_subscription_id(self, db: Session, stripe_subscription_id: str) -> Optional[Subscription]:
        return db.query(Subscription).filter(
            Subscription.stripe_subscription_id == stripe_subscription_id
        ).first()

    def get_by_customer_id(self, db: Session, stripe_customer_id: str) -> Optional[Subscription]:
        return db.query(Subscription).filter(
            Subscription.stripe_customer_id == stripe_customer_id
        ).first()

    def get_for_user(self, db: Session, user_id: int) -> Optional[Subscription]:
        return db.query(Subscription).filter(Subscription.user_id == user_id).first()

    def list_past_due(self, db: Session) -> List[Subscription]:
        return db.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.PAST_DUE
        ).all()

    def resolve_user_id(
        self,
        db: Session,
        fields: ExtractedSubscriptionData,
        user_id: Optional[int] = None,
        email_lookup: Optional[Callable[[], Optional[str]]] = None,
    ) -> int:
        """
        Resolve the local user that owns a Stripe subscription.

        Tries, in order: the explicit user_id, an existing record for the same
        customer, the customer email (from the extracted data, else from
        email_lookup, which may call Stripe).

        Raises:
            ReconciliationError: If no user can be resolved
        """
        if user_id is not None:
            if db.query(User.id).filter(User.id == user_id).first() is None:
                raise ReconciliationError(
                    "User not found for subscription",
                    user_id=user_id,
                    subscription_id=mask_id(fields.stripe_subscription_id),
                )
            return user_id

        by_customer = self.get_by_customer_id(db, fields.stripe_customer_id)
        if by_customer:
            return by_customer.user_id

        email = fields.customer_email
        if not email and email_lookup is not None:
            email = email_lookup()

        if email:
            user = db.query(User).filter(func.lower(User.email) == email.lower()).first()
            if user:
                return user.id

        raise ReconciliationError(
            "User not found for Stripe customer",
            customer_id=mask_id(fields.stripe_customer_id),
            subscription_id=mask_id(fields.stripe_subscription_id),
            email_checked=bool(email),
        )

    def _apply(self, record: Subscription, fields: ExtractedSubscriptionData) -> None:
        for name in REPLACED_FIELDS:
            setattr(record, name, getattr(fields, name))
        if fields.created_at is not None:
            record.created_at = fields.created_at
        record.updated_at = utcnow()

    def upsert(
        self,
        db: Session,
        stripe_subscription_id: str,
        fields: ExtractedSubscriptionData,
        user_id: Optional[int] = None,
        email_lookup: Optional[Callable[[], Optional[str]]] = None,
    ) -> Subscription:
        """
        Create or fully replace the record for stripe_subscription_id.

        When the resolved user already holds a record for another subscription:
        a terminal record is superseded by the new subscription; a terminal
        incoming notification for a superseded subscription is ignored; two
        live subscriptions raise ReconciliationError.
        """
        if fields.stripe_subscription_id != stripe_subscription_id:
            raise ValidationError(
                "Subscription ID does not match extracted data",
                subscription_id=mask_id(stripe_subscription_id),
            )

        record = self.get_by_stripe_subscription_id(db, stripe_subscription_id)
        if record:
            self._apply(record, fields)
            db.flush()
            log_operation(
                logger, "subscription_upsert", True,
                operation_type="update",
                subscription_id=stripe_subscription_id,
                user_id=record.user_id,
                status=record.status.value,
            )
            return record

        owner_id = self.resolve_user_id(db, fields, user_id=user_id, email_lookup=email_lookup)
        existing = self.get_for_user(db, owner_id)

        if existing is not None:
            if existing.status in TERMINAL_STATUSES:
                logger.info(
                    f"Superseding subscription: user_id={owner_id}, "
                    f"old={mask_id(existing.stripe_subscription_id)}, new={mask_id(stripe_subscription_id)}"
                )
                existing.stripe_subscription_id = stripe_subscription_id
                self._apply(existing, fields)
                db.flush()
                log_operation(
                    logger, "subscription_upsert", True,
                    operation_type="supersede",
                    subscription_id=stripe_subscription_id,
                    user_id=owner_id,
                    status=existing.status.value,
                )
                return existing

            if fields.status in TERMINAL_STATUSES:
                logger.info(
                    f"Ignoring {fields.status.value} notification for superseded subscription: "
                    f"user_id={owner_id}, subscription_id={mask_id(stripe_subscription_id)}"
                )
                return existing

            raise ReconciliationError(
                "User already has a live subscription",
                user_id=owner_id,
                existing_subscription_id=mask_id(existing.stripe_subscription_id),
                subscription_id=mask_id(stripe_subscription_id),
            )

        record = Subscription(user_id=owner_id, stripe_subscription_id=stripe_subscription_id)
        self._apply(record, fields)
        db.add(record)
        db.flush()
        log_operation(
            logger, "subscription_upsert", True,
            operation_type="create",
            subscription_id=stripe_subscription_id,
            user_id=owner_id,
            status=record.status.value,
        )
        return record

    def update_payment_status(
        self,
        db: Session,
        stripe_subscription_id: str,
        status: SubscriptionStatus,
        latest_invoice_id: Optional[str],
    ) -> Subscription:
        """
        Partial write for payment failures: status and invoice pointer only.

        Failed-invoice notifications carry no full subscription data, so this
        is the one write that does not replace every field.
        """
        record = self.get_by_stripe_subscription_id(db, stripe_subscription_id)
        if record is None:
            raise ReconciliationError(
                "Subscription not found for failed payment",
                subscription_id=mask_id(stripe_subscription_id),
                invoice_id=mask_id(latest_invoice_id),
            )

        previous = record.status
        record.status = status
        record.latest_invoice_id = latest_invoice_id
        record.updated_at = utcnow()
        db.flush()
        log_operation(
            logger, "subscription_payment_status", True,
            subscription_id=stripe_subscription_id,
            user_id=record.user_id,
            previous_status=previous.value if previous else None,
            status=status.value,
        )
        return record
