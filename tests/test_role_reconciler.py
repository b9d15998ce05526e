"""
Unit tests for role reconciliation across community memberships.
"""
from datetime import timedelta

import pytest

from app.db.models.community import Role
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.services.role_reconciler import FREE_ROLE, PREMIUM_ROLE, RoleReconciler

from conftest import NOW, join, make_server, make_user, role_names


@pytest.fixture
def reconciler():
    return RoleReconciler()


def subscribe(db, user, status, period_end=NOW + timedelta(days=30)):
    sub = Subscription(
        user_id=user.id,
        stripe_subscription_id=f"sub_user{user.id}",
        stripe_customer_id=f"cus_user{user.id}",
        status=status,
        current_period_end=period_end,
    )
    db.add(sub)
    db.commit()
    return sub


def test_active_subscription_gets_premium_everywhere(db, reconciler, test_user):
    owner = make_user(db, "owner@example.com")
    first = make_server(db, "First", owner=owner)
    second = make_server(db, "Second")
    join(db, test_user, first)
    join(db, test_user, second)
    subscribe(db, test_user, SubscriptionStatus.ACTIVE)

    result = reconciler.reconcile_access(db, test_user.id, NOW)
    db.commit()

    assert result.premium is True
    assert result.memberships == 2
    assert result.changed == 2
    assert role_names(db, test_user) == {first.id: PREMIUM_ROLE, second.id: PREMIUM_ROLE}

    premium = db.query(Role).filter(Role.server_id == first.id, Role.name == PREMIUM_ROLE).one()
    assert premium.color == "#FFD700"
    assert premium.is_default is False
    assert premium.creator_id == owner.id


def test_reconcile_is_idempotent(db, reconciler, test_user):
    server = make_server(db)
    join(db, test_user, server)
    subscribe(db, test_user, SubscriptionStatus.TRIALING)

    reconciler.reconcile_access(db, test_user.id, NOW)
    db.commit()
    result = reconciler.reconcile_access(db, test_user.id, NOW)
    db.commit()

    assert result.changed == 0
    assert db.query(Role).filter(Role.server_id == server.id, Role.name == PREMIUM_ROLE).count() == 1


def test_canceled_subscription_moves_premium_to_free(db, reconciler, test_user):
    server = make_server(db)
    join(db, test_user, server)
    sub = subscribe(db, test_user, SubscriptionStatus.ACTIVE)
    reconciler.reconcile_access(db, test_user.id, NOW)
    db.commit()

    sub.status = SubscriptionStatus.CANCELED
    db.commit()
    result = reconciler.reconcile_access(db, test_user.id, NOW)
    db.commit()

    assert result.premium is False
    assert result.changed == 1
    assert role_names(db, test_user) == {server.id: FREE_ROLE}

    free = db.query(Role).filter(Role.server_id == server.id, Role.name == FREE_ROLE).one()
    assert free.color == "#808080"
    assert free.is_default is True


def test_non_premium_user_keeps_other_roles(db, reconciler, test_user):
    server = make_server(db)
    join(db, test_user, server)

    result = reconciler.reconcile_access(db, test_user.id, NOW)
    db.commit()

    assert result.premium is False
    assert result.changed == 0
    assert role_names(db, test_user) == {server.id: "member"}
    assert db.query(Role).filter(Role.name.in_([PREMIUM_ROLE, FREE_ROLE])).count() == 0


def test_existing_premium_role_is_reused(db, reconciler, test_user):
    server = make_server(db)
    existing = Role(server_id=server.id, name=PREMIUM_ROLE, color="#123456")
    db.add(existing)
    db.commit()
    join(db, test_user, server)
    subscribe(db, test_user, SubscriptionStatus.ACTIVE)

    reconciler.reconcile_access(db, test_user.id, NOW)
    db.commit()

    assert db.query(Role).filter(Role.server_id == server.id, Role.name == PREMIUM_ROLE).count() == 1
    assert role_names(db, test_user) == {server.id: PREMIUM_ROLE}


def test_past_due_grace_lapse_revokes(db, reconciler, test_user):
    server = make_server(db)
    join(db, test_user, server)
    subscribe(db, test_user, SubscriptionStatus.PAST_DUE, period_end=NOW)

    inside = reconciler.reconcile_access(db, test_user.id, NOW + timedelta(days=6))
    db.commit()
    assert inside.premium is True

    after = reconciler.reconcile_access(db, test_user.id, NOW + timedelta(days=7, seconds=1))
    db.commit()
    assert after.premium is False
    assert role_names(db, test_user) == {server.id: FREE_ROLE}


def test_only_target_user_is_touched(db, reconciler, test_user):
    other = make_user(db, "other@example.com")
    server = make_server(db)
    join(db, test_user, server)
    join(db, other, server)
    subscribe(db, test_user, SubscriptionStatus.ACTIVE)

    reconciler.reconcile_access(db, test_user.id, NOW)
    db.commit()

    assert role_names(db, other) == {server.id: "member"}
