"""
Error taxonomy for the billing reconciliation engine.

ValidationError      - malformed or missing input; never retried.
ReconciliationError  - provider references that cannot be tied to a local user.
ExternalServiceError - provider/network failures; safe to retry.
"""
from typing import Any, Dict


class BillingError(Exception):
    """Base class for billing errors. Carries structured logging context."""

    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context


class ValidationError(BillingError, ValueError):
    """Raised for malformed or missing input (bad payloads, bad IDs, bad prices)."""


class ReconciliationError(BillingError):
    """Raised when a provider customer/subscription cannot be resolved to a user."""


class ExternalServiceError(BillingError):
    """Raised when the payment provider is unreachable or rejects a request transiently."""

    retryable = True
