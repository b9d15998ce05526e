"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.
"""
from app.db.models.user import User
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.db.models.community import Server, Role, Member
from app.db.models.discount_offer import CustomDiscountOffer

__all__ = [
    "User",
    "Subscription",
    "SubscriptionStatus",
    "Server",
    "Role",
    "Member",
    "CustomDiscountOffer",
]
