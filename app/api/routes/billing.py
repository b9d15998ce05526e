"""
Billing endpoints: subscription status and the cancellation-flow discount offers.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_discount_offer_service, get_subscription_sync_service
from app.core.auth_dependency import get_current_user_obj, get_db
from app.core.errors import ValidationError
from app.db.models.user import User
from app.schemas.billing import (
    AcceptOfferRequest,
    ActiveOfferResponse,
    CalculateOfferRequest,
    CustomOfferResponse,
    OfferDetailsResponse,
    RejectOfferRequest,
)
from app.services.access_policy import should_grant_premium_access
from app.services.discount_offer_service import DiscountOfferService
from app.services.subscription_sync_service import SubscriptionSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def require_owned_subscription(
    subscription_id: str,
    user: User,
    db: Session,
    sync_service: SubscriptionSyncService,
) -> None:
    """403 unless the Stripe subscription belongs to the user."""
    record = sync_service.store.get_by_stripe_subscription_id(db, subscription_id)
    if record is None or record.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Subscription does not belong to user"
        )


@router.get("/status")
def billing_status(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db),
    sync_service: SubscriptionSyncService = Depends(get_subscription_sync_service),
):
    """Current subscription state and premium access for the authenticated user."""
    record = sync_service.store.get_for_user(db, user.id)
    if record is None:
        return {"status": "FREE", "premium": False, "subscription_id": None, "current_period_end": None}

    return {
        "status": record.status.value,
        "premium": should_grant_premium_access(record),
        "subscription_id": record.stripe_subscription_id,
        "current_period_end": record.current_period_end,
        "cancel_at_period_end": record.cancel_at_period_end,
    }


@router.post("/custom-offer/calculate", response_model=OfferDetailsResponse)
def calculate_custom_offer(
    request: CalculateOfferRequest,
    user: User = Depends(get_current_user_obj),
    offer_service: DiscountOfferService = Depends(get_discount_offer_service),
):
    """Calculate a discount offer for the price the user would pay. Nothing is stored."""
    try:
        details = offer_service.calculate_offer_details(request.user_input_cents)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    return OfferDetailsResponse(
        discount_percent=details.discount_percent,
        offer_price_cents=details.offer_price_cents,
        savings_cents=details.savings_cents,
    )


@router.get("/custom-offer", response_model=ActiveOfferResponse)
def get_custom_offer(
    subscription_id: str = Query(..., min_length=1),
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db),
    sync_service: SubscriptionSyncService = Depends(get_subscription_sync_service),
    offer_service: DiscountOfferService = Depends(get_discount_offer_service),
):
    """Unexpired offer for one of the user's subscriptions."""
    require_owned_subscription(subscription_id, user, db, sync_service)

    offer = offer_service.get_active_offer(db, user.id, subscription_id)
    if offer is None:
        return ActiveOfferResponse(has_offer=False)
    return ActiveOfferResponse(has_offer=True, offer=CustomOfferResponse.model_validate(offer))


@router.post("/custom-offer/reject", response_model=CustomOfferResponse, status_code=status.HTTP_201_CREATED)
def reject_custom_offer(
    request: RejectOfferRequest,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db),
    sync_service: SubscriptionSyncService = Depends(get_subscription_sync_service),
    offer_service: DiscountOfferService = Depends(get_discount_offer_service),
):
    """Store an offer the user declined so it can be shown again for two days."""
    require_owned_subscription(request.subscription_id, user, db, sync_service)

    try:
        offer = offer_service.store_rejected_offer(
            db,
            user_id=user.id,
            subscription_id=request.subscription_id,
            original_price_cents=request.original_price_cents,
            user_input_cents=request.user_input_cents,
            offer_price_cents=request.offer_price_cents,
            discount_percent=request.discount_percent,
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    return offer


@router.post("/custom-offer/accept", response_model=CustomOfferResponse)
def accept_custom_offer(
    request: AcceptOfferRequest,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db),
    offer_service: DiscountOfferService = Depends(get_discount_offer_service),
):
    """Accept a stored offer before it expires."""
    offer = offer_service.get_offer_by_id(db, request.offer_id)
    if offer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount offer not found")
    if offer.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Offer does not belong to user")

    try:
        offer = offer_service.accept_offer(db, offer.id)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    logger.info(f"Custom offer accepted: offer_id={offer.id}, user_id={user.id}")
    return offer
