"""
Premium access policy.

Evaluated on every reconciliation; the result depends on the current time
because the past-due grace window expires without any new notification.
"""
from datetime import datetime, timedelta
from typing import Optional

from app.core.clock import utcnow, to_naive_utc
from app.db.models.subscription import Subscription, SubscriptionStatus

GRACE_PERIOD = timedelta(days=7)

PREMIUM_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


def grace_period_end(subscription: Subscription) -> Optional[datetime]:
    """End of the past-due grace window, or None without a billing period."""
    period_end = to_naive_utc(subscription.current_period_end)
    if period_end is None:
        return None
    return period_end + GRACE_PERIOD


def is_within_grace_period(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    grace_end = grace_period_end(subscription)
    if grace_end is None:
        return False
    now = to_naive_utc(now) or utcnow()
    return now <= grace_end


def should_grant_premium_access(subscription: Optional[Subscription], now: Optional[datetime] = None) -> bool:
    """
    Decide whether a subscription warrants premium access at `now`.

    ACTIVE and TRIALING always qualify. PAST_DUE qualifies until
    current_period_end + 7 days. Everything else, including a missing
    record, does not.
    """
    if subscription is None:
        return False
    if subscription.status in PREMIUM_STATUSES:
        return True
    if subscription.status == SubscriptionStatus.PAST_DUE:
        return is_within_grace_period(subscription, now)
    return False
