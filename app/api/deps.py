"""
Service dependencies for billing routes.

The Stripe gateway is built once in the application lifespan and kept on
app.state; tests override these dependencies with fakes.
"""
from fastapi import Depends, Request

from app.services.discount_offer_service import DiscountOfferService
from app.services.stripe_service import StripeGateway
from app.services.subscription_sync_service import SubscriptionSyncService


def get_stripe_gateway(request: Request) -> StripeGateway:
    gateway = getattr(request.app.state, "stripe_gateway", None)
    if gateway is None:
        gateway = StripeGateway.from_config()
        request.app.state.stripe_gateway = gateway
    return gateway


def get_subscription_sync_service(
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> SubscriptionSyncService:
    return SubscriptionSyncService(gateway)


def get_discount_offer_service() -> DiscountOfferService:
    return DiscountOfferService()
