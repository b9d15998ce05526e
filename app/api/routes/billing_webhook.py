"""
Stripe webhook endpoint.

Non-2xx responses make Stripe redeliver the event, so an event is only
acknowledged once it has been fully processed or deliberately ignored.
"""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_stripe_gateway, get_subscription_sync_service
from app.core.auth_dependency import get_db
from app.core.errors import ExternalServiceError, ReconciliationError, ValidationError
from app.services.billing_event_handlers import dispatch_event
from app.services.stripe_service import StripeGateway
from app.services.subscription_sync_service import SubscriptionSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing Webhook"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    sync_service: SubscriptionSyncService = Depends(get_subscription_sync_service),
):
    """
    Receive a Stripe webhook event.

    - 200: processed, or event type not handled
    - 400: bad signature or invalid payload
    - 500: the event could not be reconciled (e.g. unknown user)
    - 503: Stripe unavailable while re-fetching data
    """
    payload = await request.body()

    try:
        event = gateway.construct_event(payload, stripe_signature)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ExternalServiceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    try:
        handled = dispatch_event(event, db, sync_service)
    except ValidationError as e:
        logger.warning(f"Rejected webhook event: type={event.get('type')}, id={event.get('id')}, error={e.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ReconciliationError as e:
        logger.error(f"Webhook event not reconciled: type={event.get('type')}, id={event.get('id')}, error={e.message}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
    except ExternalServiceError as e:
        logger.error(f"Stripe unavailable for event: type={event.get('type')}, id={event.get('id')}, error={e.message}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return {"status": "success" if handled else "ignored", "type": event.get("type")}
