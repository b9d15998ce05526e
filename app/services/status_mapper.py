"""
Mapping from Stripe subscription statuses to the internal status enum.
"""
from typing import Any

from app.db.models.subscription import SubscriptionStatus

STRIPE_STATUS_MAP = {
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE_EXPIRED,
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
    "paused": SubscriptionStatus.PAUSED,
}


def map_external_status(raw: Any) -> SubscriptionStatus:
    """
    Map a raw Stripe status to SubscriptionStatus.

    Unknown values (including None) map to FREE, i.e. no special access.
    """
    if not isinstance(raw, str):
        return SubscriptionStatus.FREE
    return STRIPE_STATUS_MAP.get(raw, SubscriptionStatus.FREE)
