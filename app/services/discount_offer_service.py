"""
Custom discount offers for the cancellation flow.

When a user about to cancel names a price they would pay, a small random
discount is offered on top of it, never below the price floor. Offers the
user declines are stored per (user, subscription) and expire after two days.
"""
import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import ValidationError
from app.core.logging_config import log_operation, mask_id
from app.db.models.discount_offer import CustomDiscountOffer

logger = logging.getLogger(__name__)

MIN_OFFER_PRICE_CENTS = 2000
MIN_DISCOUNT_PERCENT = 5
MAX_DISCOUNT_PERCENT = 10
OFFER_TTL = timedelta(days=2)
PERCENT_TOLERANCE = 0.01


@dataclass(frozen=True)
class OfferDetails:
    discount_percent: float
    offer_price_cents: int
    savings_cents: int


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def derive_discount_percent(user_input_cents: int, offer_price_cents: int) -> float:
    """Discount percent implied by the two prices, to two decimals."""
    savings = user_input_cents - offer_price_cents
    if savings <= 0:
        return 0.0
    return _round_half_up(savings / user_input_cents * 10000) / 100


class DiscountOfferService:

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def generate_random_discount(self) -> float:
        """Random discount percent in [5, 10], rounded to two decimals."""
        return round(self.rng.uniform(MIN_DISCOUNT_PERCENT, MAX_DISCOUNT_PERCENT), 2)

    def calculate_offer_details(self, user_input_cents: int) -> OfferDetails:
        """
        Calculate an offer for the price the user said they would pay.

        The random discount is applied, the price clipped to the floor, and
        percent and savings are recomputed from the clipped price so the
        reported percent always matches the stored cents.

        Raises:
            ValidationError: If user_input_cents is not positive
        """
        if user_input_cents is None or user_input_cents <= 0:
            raise ValidationError("User input price must be greater than 0", user_input_cents=user_input_cents)

        if user_input_cents <= MIN_OFFER_PRICE_CENTS:
            return OfferDetails(discount_percent=0.0, offer_price_cents=MIN_OFFER_PRICE_CENTS, savings_cents=0)

        discount_percent = self.generate_random_discount()
        discount_amount = _round_half_up(user_input_cents * discount_percent / 100)
        offer_price_cents = max(user_input_cents - discount_amount, MIN_OFFER_PRICE_CENTS)

        return OfferDetails(
            discount_percent=derive_discount_percent(user_input_cents, offer_price_cents),
            offer_price_cents=offer_price_cents,
            savings_cents=user_input_cents - offer_price_cents,
        )

    def _validate_prices(
        self,
        original_price_cents: int,
        user_input_cents: int,
        offer_price_cents: int,
    ) -> None:
        if original_price_cents <= 0:
            raise ValidationError("Original price must be greater than 0")
        if user_input_cents <= 0:
            raise ValidationError("User input price must be greater than 0")
        if offer_price_cents <= 0:
            raise ValidationError("Offer price must be greater than 0")
        if offer_price_cents < MIN_OFFER_PRICE_CENTS:
            raise ValidationError(
                f"Offer price must be at least {MIN_OFFER_PRICE_CENTS} cents",
                offer_price_cents=offer_price_cents,
            )
        if offer_price_cents > max(user_input_cents, MIN_OFFER_PRICE_CENTS):
            raise ValidationError(
                "Offer price cannot exceed the user's price",
                offer_price_cents=offer_price_cents,
                user_input_cents=user_input_cents,
            )

    def get_offer_by_id(self, db: Session, offer_id: int) -> Optional[CustomDiscountOffer]:
        return db.query(CustomDiscountOffer).filter(CustomDiscountOffer.id == offer_id).first()

    def _get_offer(self, db: Session, user_id: int, subscription_id: str) -> Optional[CustomDiscountOffer]:
        return db.query(CustomDiscountOffer).filter(
            CustomDiscountOffer.user_id == user_id,
            CustomDiscountOffer.subscription_id == subscription_id,
        ).first()

    def store_rejected_offer(
        self,
        db: Session,
        user_id: int,
        subscription_id: str,
        original_price_cents: int,
        user_input_cents: int,
        offer_price_cents: int,
        discount_percent: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> CustomDiscountOffer:
        """
        Store an offer the user declined, replacing any earlier unaccepted one.

        The stored percent is derived from the prices. A supplied percent is
        only checked against it.

        Raises:
            ValidationError: Invalid prices, a percent that does not match the
                prices, or an already accepted offer for this subscription
        """
        if not subscription_id:
            raise ValidationError("Subscription ID is required")
        self._validate_prices(original_price_cents, user_input_cents, offer_price_cents)

        derived = derive_discount_percent(user_input_cents, offer_price_cents)
        if discount_percent is not None and abs(discount_percent - derived) > PERCENT_TOLERANCE:
            raise ValidationError(
                "Discount percent does not match offer price",
                discount_percent=discount_percent,
                expected_percent=derived,
            )

        now = now or utcnow()
        values = {
            "original_price_cents": original_price_cents,
            "user_input_cents": user_input_cents,
            "offer_price_cents": offer_price_cents,
            "discount_percent": derived,
            "savings_cents": max(user_input_cents - offer_price_cents, 0),
            "expires_at": now + OFFER_TTL,
            "is_expired": False,
            "accepted_at": None,
            "updated_at": now,
        }

        # A concurrent insert for the same key loses the unique constraint
        # race once; the retry then takes the update path.
        for attempt in range(2):
            offer = self._get_offer(db, user_id, subscription_id)
            if offer is not None and offer.accepted_at is not None:
                raise ValidationError(
                    "Offer has already been accepted",
                    offer_id=offer.id,
                    subscription_id=mask_id(subscription_id),
                )
            if offer is None:
                offer = CustomDiscountOffer(user_id=user_id, subscription_id=subscription_id)
                db.add(offer)
            for name, value in values.items():
                setattr(offer, name, value)

            try:
                db.commit()
                break
            except IntegrityError:
                db.rollback()
                if attempt:
                    raise
                logger.info(f"Concurrent offer insert, retrying: subscription_id={mask_id(subscription_id)}")

        db.refresh(offer)
        log_operation(
            logger, "custom_discount_offer_stored", True,
            user_id=user_id,
            subscription_id=subscription_id,
            offer_id=offer.id,
            offer_price_cents=offer.offer_price_cents,
            discount_percent=offer.discount_percent,
            expires_at=offer.expires_at.isoformat(),
        )
        return offer

    def mark_as_expired(self, db: Session, offer_id: int) -> CustomDiscountOffer:
        offer = self.get_offer_by_id(db, offer_id)
        if offer is None:
            raise ValidationError("Discount offer not found", offer_id=offer_id)

        offer.is_expired = True
        offer.updated_at = utcnow()
        db.commit()
        db.refresh(offer)
        log_operation(logger, "custom_discount_offer_expired", True, offer_id=offer.id, user_id=offer.user_id)
        return offer

    def get_active_offer(
        self,
        db: Session,
        user_id: int,
        subscription_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[CustomDiscountOffer]:
        """
        Return the user's unexpired offer for a subscription, or None.

        An offer found past its expiry time is flagged expired as a side
        effect. Failing to persist the flag does not fail the read.
        """
        offer = self._get_offer(db, user_id, subscription_id)
        if offer is None:
            return None

        now = now or utcnow()
        if offer.is_expired:
            return None

        if now > offer.expires_at:
            try:
                self.mark_as_expired(db, offer.id)
            except SQLAlchemyError as e:
                db.rollback()
                logger.warning(f"Failed to flag expired offer: offer_id={offer.id}, error={e}")
            return None

        return offer

    def accept_offer(self, db: Session, offer_id: int, now: Optional[datetime] = None) -> CustomDiscountOffer:
        """
        Mark an offer accepted.

        Expiry is checked against the clock here, not only the is_expired
        flag, since a preceding read may have raced past the boundary.

        Raises:
            ValidationError: Missing, already accepted, or expired offer
        """
        offer = self.get_offer_by_id(db, offer_id)
        if offer is None:
            raise ValidationError("Discount offer not found", offer_id=offer_id)
        if offer.accepted_at is not None:
            raise ValidationError("Offer has already been accepted", offer_id=offer_id)

        now = now or utcnow()
        if offer.is_expired or now > offer.expires_at:
            raise ValidationError("Offer has expired", offer_id=offer_id)

        offer.accepted_at = now
        offer.updated_at = now
        db.commit()
        db.refresh(offer)
        log_operation(
            logger, "custom_discount_offer_accepted", True,
            offer_id=offer.id,
            user_id=offer.user_id,
            offer_price_cents=offer.offer_price_cents,
            accepted_at=offer.accepted_at.isoformat(),
        )
        return offer

    def cleanup_expired_offers(self, db: Session, now: Optional[datetime] = None) -> int:
        """Flag every offer past its expiry time. Returns the number flagged."""
        now = now or utcnow()
        count = db.query(CustomDiscountOffer).filter(
            CustomDiscountOffer.expires_at < now,
            CustomDiscountOffer.is_expired.is_(False),
        ).update({"is_expired": True, "updated_at": now}, synchronize_session=False)
        db.commit()
        log_operation(logger, "expired_discount_offers_cleaned", True, expired_count=count)
        return count

    def get_offer_stats(self, db: Session, now: Optional[datetime] = None) -> Dict[str, float]:
        """Offer counts and average discount for admin reporting."""
        now = now or utcnow()
        query = db.query(CustomDiscountOffer)

        total = query.count()
        active = query.filter(
            CustomDiscountOffer.expires_at > now,
            CustomDiscountOffer.is_expired.is_(False),
            CustomDiscountOffer.accepted_at.is_(None),
        ).count()
        expired = query.filter(
            or_(CustomDiscountOffer.expires_at < now, CustomDiscountOffer.is_expired.is_(True))
        ).count()
        accepted = query.filter(CustomDiscountOffer.accepted_at.isnot(None)).count()
        avg_discount = db.query(func.avg(CustomDiscountOffer.discount_percent)).scalar()

        return {
            "total_offers": total,
            "active_offers": active,
            "expired_offers": expired,
            "accepted_offers": accepted,
            "avg_discount_percent": float(avg_discount or 0),
        }
