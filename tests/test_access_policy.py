"""
Unit tests for the premium access policy and grace period.
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.db.models.subscription import Subscription, SubscriptionStatus
from app.services.access_policy import (
    GRACE_PERIOD,
    grace_period_end,
    is_within_grace_period,
    should_grant_premium_access,
)

PERIOD_END = datetime(2026, 3, 1, 0, 0, 0)


def make_subscription(status, period_end=PERIOD_END):
    return Subscription(
        user_id=1,
        stripe_subscription_id="sub_policy",
        stripe_customer_id="cus_policy",
        status=status,
        current_period_end=period_end,
    )


@pytest.mark.parametrize("status", [SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING])
def test_active_and_trialing_are_premium(status):
    sub = make_subscription(status, period_end=None)
    assert should_grant_premium_access(sub, PERIOD_END + timedelta(days=365)) is True


@pytest.mark.parametrize("status", [
    SubscriptionStatus.CANCELED,
    SubscriptionStatus.UNPAID,
    SubscriptionStatus.INCOMPLETE,
    SubscriptionStatus.INCOMPLETE_EXPIRED,
    SubscriptionStatus.PAUSED,
    SubscriptionStatus.FREE,
])
def test_other_statuses_are_not_premium(status):
    sub = make_subscription(status)
    assert should_grant_premium_access(sub, PERIOD_END - timedelta(days=1)) is False


def test_missing_subscription_is_not_premium():
    assert should_grant_premium_access(None) is False


def test_past_due_inside_grace_period():
    sub = make_subscription(SubscriptionStatus.PAST_DUE)
    now = PERIOD_END + timedelta(days=6, hours=23, minutes=59, seconds=59)
    assert should_grant_premium_access(sub, now) is True


def test_past_due_at_exact_grace_boundary():
    sub = make_subscription(SubscriptionStatus.PAST_DUE)
    assert should_grant_premium_access(sub, PERIOD_END + GRACE_PERIOD) is True


def test_past_due_after_grace_period():
    sub = make_subscription(SubscriptionStatus.PAST_DUE)
    now = PERIOD_END + timedelta(days=7, seconds=1)
    assert should_grant_premium_access(sub, now) is False


def test_past_due_without_period_end():
    sub = make_subscription(SubscriptionStatus.PAST_DUE, period_end=None)
    assert grace_period_end(sub) is None
    assert should_grant_premium_access(sub, PERIOD_END) is False


def test_aware_now_is_normalized_to_utc():
    sub = make_subscription(SubscriptionStatus.PAST_DUE)
    # 2026-03-08 01:30 in UTC+2 is 2026-03-07 23:30 UTC, still inside the window
    plus_two = timezone(timedelta(hours=2))
    now = datetime(2026, 3, 8, 1, 30, tzinfo=plus_two)
    assert is_within_grace_period(sub, now) is True
