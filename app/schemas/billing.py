"""
Pydantic schemas for billing.

Two groups:
- Stripe payloads, validated at the webhook boundary into a tagged union
  discriminated on Stripe's `object` field.
- Request/response schemas for the custom discount offer endpoints.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ValidationError
from app.db.models.subscription import SubscriptionStatus

StripeRef = Union[str, Dict[str, Any]]


def ref_id(ref: Optional[StripeRef]) -> Optional[str]:
    """ID of a Stripe reference that may be a bare ID or an expanded object."""
    if ref is None:
        return None
    if isinstance(ref, str):
        return ref
    return ref.get("id")


# ============================================
# Stripe payloads
# ============================================

class StripeSubscriptionPayload(BaseModel):
    object: Literal["subscription"]
    id: str
    customer: Optional[StripeRef] = None
    status: Optional[str] = None
    created: Optional[int] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: Optional[bool] = None
    canceled_at: Optional[int] = None
    ended_at: Optional[int] = None
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    latest_invoice: Optional[StripeRef] = None
    items: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class StripeInvoicePayload(BaseModel):
    object: Literal["invoice"]
    id: str
    customer: Optional[StripeRef] = None
    subscription: Optional[StripeRef] = None
    parent: Optional[Dict[str, Any]] = None
    attempt_count: Optional[int] = None
    status: Optional[str] = None
    created: Optional[int] = None
    period_end: Optional[int] = None
    lines: Optional[Dict[str, Any]] = None

    @property
    def subscription_id(self) -> Optional[str]:
        """Linked subscription ID; newer API versions nest it under parent.subscription_details."""
        direct = ref_id(self.subscription)
        if direct:
            return direct
        details = (self.parent or {}).get("subscription_details") or {}
        return ref_id(details.get("subscription"))


class StripeCheckoutSessionPayload(BaseModel):
    object: Literal["checkout.session"]
    id: str
    customer: Optional[StripeRef] = None
    customer_email: Optional[str] = None
    customer_details: Optional[Dict[str, Any]] = None
    subscription: Optional[StripeRef] = None
    payment_status: Optional[str] = None
    mode: Optional[str] = None
    created: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def subscription_id(self) -> Optional[str]:
        return ref_id(self.subscription)

    @property
    def email(self) -> Optional[str]:
        """Best available email: metadata, then customer_details, then customer_email."""
        metadata = self.metadata or {}
        details = self.customer_details or {}
        return metadata.get("email") or details.get("email") or self.customer_email


StripeNotification = Annotated[
    Union[StripeSubscriptionPayload, StripeInvoicePayload, StripeCheckoutSessionPayload],
    Field(discriminator="object"),
]

_notification_adapter = TypeAdapter(StripeNotification)


def parse_stripe_object(obj: Any) -> Union[StripeSubscriptionPayload, StripeInvoicePayload, StripeCheckoutSessionPayload]:
    """
    Validate a raw Stripe object into the notification union.

    Raises:
        ValidationError: If the object is not a mapping, has an unsupported
            `object` type, or is missing required fields
    """
    if not isinstance(obj, Mapping):
        raise ValidationError("Stripe payload must be an object", payload_type=type(obj).__name__)
    try:
        return _notification_adapter.validate_python(obj)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid Stripe payload: {e.error_count()} validation error(s)",
            object_type=obj.get("object", "unknown"),
        ) from e


def _parse_as(obj: Any, expected: type, label: str):
    payload = parse_stripe_object(obj)
    if not isinstance(payload, expected):
        raise ValidationError(f"Expected Stripe {label} object", object_type=payload.object)
    return payload


def parse_subscription(obj: Any) -> StripeSubscriptionPayload:
    return _parse_as(obj, StripeSubscriptionPayload, "subscription")


def parse_invoice(obj: Any) -> StripeInvoicePayload:
    return _parse_as(obj, StripeInvoicePayload, "invoice")


def parse_checkout_session(obj: Any) -> StripeCheckoutSessionPayload:
    return _parse_as(obj, StripeCheckoutSessionPayload, "checkout.session")


@dataclass(frozen=True)
class ExtractedSubscriptionData:
    """Subscription fields extracted from a Stripe object, ready for the store."""

    stripe_subscription_id: str
    stripe_customer_id: str
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    latest_invoice_id: Optional[str] = None
    created_at: Optional[datetime] = None
    customer_email: Optional[str] = None

    def with_changes(self, **changes: Any) -> "ExtractedSubscriptionData":
        return replace(self, **changes)


# ============================================
# Custom discount offer API
# ============================================

class CalculateOfferRequest(BaseModel):
    """Request schema for calculating a retention offer."""
    user_input_cents: int = Field(..., gt=0, description="Price the user said they would pay, in cents")

    class Config:
        json_schema_extra = {
            "example": {"user_input_cents": 5000}
        }


class OfferDetailsResponse(BaseModel):
    """Calculated offer, not yet stored."""
    discount_percent: float
    offer_price_cents: int
    savings_cents: int


class RejectOfferRequest(BaseModel):
    """Request schema for storing an offer the user declined."""
    subscription_id: str = Field(..., min_length=1, description="Stripe subscription ID")
    original_price_cents: int = Field(..., gt=0)
    user_input_cents: int = Field(..., gt=0)
    offer_price_cents: int = Field(..., gt=0)
    discount_percent: Optional[float] = Field(None, ge=0, le=100)

    class Config:
        json_schema_extra = {
            "example": {
                "subscription_id": "sub_1PxYz",
                "original_price_cents": 14999,
                "user_input_cents": 5000,
                "offer_price_cents": 4650,
                "discount_percent": 7.0
            }
        }


class AcceptOfferRequest(BaseModel):
    """Request schema for accepting a stored offer."""
    offer_id: int = Field(..., gt=0)


class CustomOfferResponse(BaseModel):
    """Stored custom discount offer."""
    id: int
    subscription_id: str
    original_price_cents: int
    user_input_cents: int
    offer_price_cents: int
    discount_percent: float
    savings_cents: int
    expires_at: datetime
    accepted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ActiveOfferResponse(BaseModel):
    """Response for the active offer lookup."""
    has_offer: bool
    offer: Optional[CustomOfferResponse] = None


class BillingErrorResponse(BaseModel):
    """Error response schema for billing operations."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "reconciliation_error",
                "detail": "User not found for Stripe customer"
            }
        }
