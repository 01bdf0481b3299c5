"""
Webhook Schemas
===============

Pydantic models for provider webhook payloads and the canonical billing
events they are normalized into.

Provider models only declare the fields the reconciler reads; everything
else in the payload is ignored.
"""

from decimal import Decimal
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.subscription import BillingInterval, PaymentProvider


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _dict_or_empty(value: Any) -> Any:
    # Providers send "" or [] for empty objects on some event types
    return value if isinstance(value, dict) else {}


def _str_or_none(value: Any) -> Any:
    # Numeric ids arrive as ints
    if value is None or value == "":
        return None
    return str(value)


# ─── Paystack ────────────────────────────────────────────────────────────────


class PaystackCustomer(_ProviderModel):
    customer_code: Optional[str] = None
    email: Optional[str] = None


class PaystackAuthorization(_ProviderModel):
    authorization_code: Optional[str] = None


class PaystackPlan(_ProviderModel):
    plan_code: Optional[str] = None
    subscription_code: Optional[str] = None


class PaystackSubscriptionRef(_ProviderModel):
    subscription_code: Optional[str] = None


class PaystackChargeData(_ProviderModel):
    """``data`` of charge.success."""

    id: Optional[str] = None
    reference: str = Field(min_length=1)
    status: Optional[str] = None
    amount: Decimal = Field(description="Minor units")
    currency: str = "NGN"
    metadata: dict[str, Any] = Field(default_factory=dict)
    plan: dict[str, Any] = Field(default_factory=dict)
    subscription_code: Optional[str] = None
    customer: Optional[PaystackCustomer] = None
    authorization: Optional[PaystackAuthorization] = None

    @field_validator("metadata", "plan", mode="before")
    @classmethod
    def _empty_objects(cls, value: Any) -> Any:
        return _dict_or_empty(value)

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        return _str_or_none(value)

    @property
    def plan_info(self) -> PaystackPlan:
        return PaystackPlan.model_validate(self.plan)


class PaystackSubscriptionData(_ProviderModel):
    """``data`` of subscription.* events."""

    subscription_code: str = Field(min_length=1)
    status: Optional[str] = None


class PaystackFailureData(_ProviderModel):
    """``data`` of invoice/charge failure events."""

    reference: Optional[str] = None
    subscription_code: Optional[str] = None
    subscription: dict[str, Any] = Field(default_factory=dict)
    plan: dict[str, Any] = Field(default_factory=dict)

    @field_validator("subscription", "plan", mode="before")
    @classmethod
    def _empty_objects(cls, value: Any) -> Any:
        return _dict_or_empty(value)

    @property
    def resolved_subscription_code(self) -> Optional[str]:
        return (
            self.subscription_code
            or PaystackSubscriptionRef.model_validate(self.subscription).subscription_code
            or PaystackPlan.model_validate(self.plan).subscription_code
        )


# ─── Flutterwave ─────────────────────────────────────────────────────────────


class FlutterwaveChargeData(_ProviderModel):
    """``data`` of charge.completed."""

    id: str = Field(min_length=1)
    tx_ref: str = Field(min_length=1)
    flw_ref: Optional[str] = None
    status: str
    amount: Decimal = Field(description="Major units")
    currency: str = "USD"
    meta: dict[str, Any] = Field(default_factory=dict)
    payment_plan: Optional[str] = None
    plan: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        return _str_or_none(value)

    @field_validator("meta", mode="before")
    @classmethod
    def _empty_objects(cls, value: Any) -> Any:
        return _dict_or_empty(value)

    @field_validator("payment_plan", "plan", mode="before")
    @classmethod
    def _plan_id(cls, value: Any) -> Any:
        if isinstance(value, dict):
            value = value.get("id")
        return _str_or_none(value)


class FlutterwaveSubscriptionData(_ProviderModel):
    """``data`` of subscription.cancelled."""

    id: str = Field(min_length=1)
    tx_ref: Optional[str] = None
    status: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        return _str_or_none(value)


# ─── Stripe ──────────────────────────────────────────────────────────────────


class StripeCheckoutSession(_ProviderModel):
    id: str = Field(min_length=1)
    mode: Optional[str] = None
    subscription: Optional[str] = None
    customer: Optional[str] = None
    payment_intent: Optional[str] = None
    amount_total: Optional[Decimal] = None
    currency: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _empty_objects(cls, value: Any) -> Any:
        return _dict_or_empty(value)


class StripeInvoice(_ProviderModel):
    id: str = Field(min_length=1)
    subscription: Optional[str] = None
    customer: Optional[str] = None
    payment_intent: Optional[str] = None
    amount_paid: Optional[Decimal] = None
    currency: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    subscription_details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", "subscription_details", mode="before")
    @classmethod
    def _empty_objects(cls, value: Any) -> Any:
        return _dict_or_empty(value)

    @property
    def merged_metadata(self) -> dict[str, Any]:
        subscription_metadata = _dict_or_empty(self.subscription_details.get("metadata"))
        return {**subscription_metadata, **self.metadata}


class StripeSubscription(_ProviderModel):
    id: str = Field(min_length=1)
    status: Optional[str] = None
    cancel_at_period_end: bool = False


# ─── Canonical events ────────────────────────────────────────────────────────


class _CanonicalEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: PaymentProvider
    event_type: str


class ChargeSucceeded(_CanonicalEvent):
    """A completed charge the reconciler may turn into a subscription."""

    kind: Literal["charge_succeeded"] = "charge_succeeded"
    reference: str
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    plan_id: Optional[str] = None
    billing_interval: BillingInterval = BillingInterval.MONTHLY
    has_recurring_plan: bool = False
    subscription_code: Optional[str] = None
    customer_code: Optional[str] = None
    authorization_code: Optional[str] = None
    verification_id: Optional[str] = Field(
        default=None,
        description="Identifier the provider's verify endpoint expects",
    )


class SubscriptionCreated(_CanonicalEvent):
    kind: Literal["subscription_created"] = "subscription_created"
    subscription_code: str


class SubscriptionDisabled(_CanonicalEvent):
    kind: Literal["subscription_disabled"] = "subscription_disabled"
    subscription_code: str


class SubscriptionNotRenewing(_CanonicalEvent):
    kind: Literal["subscription_not_renewing"] = "subscription_not_renewing"
    subscription_code: str


class ChargeFailed(_CanonicalEvent):
    kind: Literal["charge_failed"] = "charge_failed"
    subscription_code: Optional[str] = None
    reference: Optional[str] = None


class IgnoredEvent(_CanonicalEvent):
    kind: Literal["ignored"] = "ignored"


BillingEvent = Union[
    ChargeSucceeded,
    SubscriptionCreated,
    SubscriptionDisabled,
    SubscriptionNotRenewing,
    ChargeFailed,
    IgnoredEvent,
]


class WebhookAck(BaseModel):
    """Response body for every accepted webhook."""

    received: bool = True
