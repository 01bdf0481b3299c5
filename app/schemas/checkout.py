"""
Checkout Schemas
================

Request/response schemas for hosted checkout session creation.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CheckoutSessionRequest(BaseModel):
    """Body of POST /checkout/create-session (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    plan_id: Optional[str] = Field(default=None, alias="planId")
    billing_interval: Optional[str] = Field(default=None, alias="billingInterval")
    currency: Optional[str] = None
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    success_url: Optional[str] = Field(default=None, alias="successUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")
    email: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    provider: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey", max_length=128)


class CheckoutSessionResponse(BaseModel):
    """Hosted payment session handed back to the client."""

    model_config = ConfigDict(populate_by_name=True)

    provider: str
    reference: str
    url: str
    test_mode: bool = Field(alias="testMode")
    currency: str
    amount: Decimal
    billing_interval: str = Field(alias="billingInterval")


class CheckoutConfirmRequest(BaseModel):
    """Body of POST /checkout/confirm, sent after the provider redirect."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    provider: str
    reference: str = Field(min_length=1, max_length=256)
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")


class CheckoutConfirmResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    provider: str
    reference: str
    plan_id: str = Field(alias="planId")
    billing_interval: str = Field(alias="billingInterval")
    subscription_code: Optional[str] = Field(default=None, alias="subscriptionCode")
