"""
Pydantic Schemas
================

Request/response schemas for API validation and the canonical billing
events produced from provider webhooks.
"""

from app.schemas.checkout import (
    CheckoutConfirmRequest,
    CheckoutConfirmResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
)
from app.schemas.common import ErrorDetail, ErrorResponse
from app.schemas.webhooks import (
    BillingEvent,
    ChargeFailed,
    ChargeSucceeded,
    IgnoredEvent,
    SubscriptionCreated,
    SubscriptionDisabled,
    SubscriptionNotRenewing,
    WebhookAck,
)

__all__ = [
    # Common
    "ErrorDetail",
    "ErrorResponse",
    # Checkout
    "CheckoutSessionRequest",
    "CheckoutSessionResponse",
    "CheckoutConfirmRequest",
    "CheckoutConfirmResponse",
    # Webhooks
    "BillingEvent",
    "ChargeSucceeded",
    "SubscriptionCreated",
    "SubscriptionDisabled",
    "SubscriptionNotRenewing",
    "ChargeFailed",
    "IgnoredEvent",
    "WebhookAck",
]
