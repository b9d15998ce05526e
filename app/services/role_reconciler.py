"""
Role reconciliation: project a user's subscription state onto community roles.

Only the synthetic `premium` and `free` roles are ever assigned here; other
roles are never created or modified. Desired state is recomputed from the
store on every pass, so repeated or concurrent passes converge.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.logging_config import log_operation
from app.db.models.community import Member, Role, Server
from app.db.models.subscription import Subscription
from app.services.access_policy import should_grant_premium_access

logger = logging.getLogger(__name__)

PREMIUM_ROLE = "premium"
FREE_ROLE = "free"

ROLE_DEFINITIONS = {
    PREMIUM_ROLE: {"color": "#FFD700", "is_default": False},
    FREE_ROLE: {"color": "#808080", "is_default": True},
}


@dataclass
class ReconcileResult:
    user_id: int
    premium: bool
    memberships: int = 0
    changed: int = 0


class RoleReconciler:

    def _lock_subscription(self, db: Session, user_id: int) -> Optional[Subscription]:
        # FOR UPDATE serializes reconciliations for one user; ignored on SQLite
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .with_for_update()
            .first()
        )

    def get_or_create_role(self, db: Session, server_id: int, role_name: str) -> Role:
        """
        Find the named synthetic role in a server, creating it if absent.

        Creation runs in a savepoint; if another worker created the same role
        first, the unique constraint fires and the existing row is re-read.
        """
        role = db.query(Role).filter(Role.server_id == server_id, Role.name == role_name).first()
        if role:
            return role

        definition = ROLE_DEFINITIONS[role_name]
        server = db.get(Server, server_id)
        try:
            with db.begin_nested():
                role = Role(
                    server_id=server_id,
                    name=role_name,
                    color=definition["color"],
                    is_default=definition["is_default"],
                    creator_id=server.owner_id if server else None,
                )
                db.add(role)
            logger.info(f"Created role: server_id={server_id}, name={role_name}")
            return role
        except IntegrityError:
            logger.info(f"Role created concurrently, re-reading: server_id={server_id}, name={role_name}")
            return db.query(Role).filter(Role.server_id == server_id, Role.name == role_name).one()

    def reconcile_access(self, db: Session, user_id: int, now: Optional[datetime] = None) -> ReconcileResult:
        """
        Assign premium or free roles across every community the user belongs to.

        Runs inside the caller's transaction and does not commit. Memberships
        already holding the desired role are left untouched.

        Returns:
            ReconcileResult with the desired access level and number of
            memberships reassigned
        """
        now = now or utcnow()
        subscription = self._lock_subscription(db, user_id)
        desired_premium = should_grant_premium_access(subscription, now)
        target_name = PREMIUM_ROLE if desired_premium else FREE_ROLE

        memberships = db.query(Member).filter(Member.user_id == user_id).all()
        result = ReconcileResult(user_id=user_id, premium=desired_premium, memberships=len(memberships))

        roles: Dict[int, Role] = {}
        for member in memberships:
            current_premium = member.role is not None and member.role.name == PREMIUM_ROLE
            if current_premium == desired_premium:
                continue

            if member.server_id not in roles:
                roles[member.server_id] = self.get_or_create_role(db, member.server_id, target_name)
            target = roles[member.server_id]

            member.role_id = target.id
            member.role = target
            result.changed += 1

        if result.changed:
            db.flush()

        log_operation(
            logger, "reconcile_access", True,
            user_id=user_id,
            status=subscription.status.value if subscription else "NONE",
            premium=desired_premium,
            memberships=result.memberships,
            changed=result.changed,
        )
        return result
