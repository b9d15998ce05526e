from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from app.db.base import Base


class CustomDiscountOffer(Base):
    """
    Retention offer shown during cancellation.

    At most one row per (user_id, subscription_id); later offers overwrite it.
    """
    __tablename__ = "custom_discount_offers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(String, nullable=False)  # Stripe subscription ID

    original_price_cents = Column(Integer, nullable=False)
    user_input_cents = Column(Integer, nullable=False)
    offer_price_cents = Column(Integer, nullable=False)
    discount_percent = Column(Float, nullable=False)
    savings_cents = Column(Integer, nullable=False)

    expires_at = Column(DateTime, nullable=False, index=True)
    is_expired = Column(Boolean, default=False, nullable=False, index=True)
    accepted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "subscription_id", name="uq_custom_discount_offers_user_subscription"),
    )
