"""
Webhook Event Normalization
===========================

Turns provider payloads into canonical billing events.

Each provider has a table of event-type handlers; types that are not in
the table become ``IgnoredEvent``. A recognized type whose payload fails
schema validation raises ``ValidationError`` so nothing downstream ever
sees a half-parsed event.
"""

import logging
from decimal import Decimal
from typing import Any, Callable, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.core import pricing
from app.core.errors import ValidationError
from app.models.subscription import BillingInterval, PaymentProvider
from app.schemas.webhooks import (
    BillingEvent,
    ChargeFailed,
    ChargeSucceeded,
    FlutterwaveChargeData,
    FlutterwaveSubscriptionData,
    IgnoredEvent,
    PaystackChargeData,
    PaystackFailureData,
    PaystackSubscriptionData,
    StripeCheckoutSession,
    StripeInvoice,
    StripeSubscription,
    SubscriptionCreated,
    SubscriptionDisabled,
    SubscriptionNotRenewing,
)
from app.services.billing_period import normalize_billing_interval

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = {"success", "successful", "succeeded"}
FAILED_STATUSES = {"failed", "cancelled", "canceled", "error"}


# =============================================================================
# Metadata helpers
# =============================================================================

def _first(metadata: dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = metadata.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return None


def normalize_plan_id(value: Optional[str]) -> Optional[str]:
    """Map plan labels such as "Business Plan" or "PRO" to a tier id."""
    if not value:
        return None
    lowered = value.strip().lower()
    if "business" in lowered:
        return "business"
    if "pro" in lowered:
        return "pro"
    return lowered


def checkout_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Extract the reconciliation fields checkout embeds in session metadata."""
    return {
        "user_id": _first(metadata, "userId", "user_id"),
        "plan_id": normalize_plan_id(_first(metadata, "planId", "plan_id", "plan")),
        "billing_interval": normalize_billing_interval(
            _first(metadata, "billingInterval", "billing_interval", "interval")
        ),
        "user_email": _first(metadata, "userEmail", "user_email", "email"),
    }


def minor_to_major(amount: Optional[Decimal], currency: Optional[str]) -> Optional[Decimal]:
    if amount is None:
        return None
    minor_unit = pricing.CURRENCY_CONFIGS.get((currency or "").upper(), {}).get("minor_unit", 100)
    return (Decimal(amount) / minor_unit).quantize(Decimal("0.01"))


def _parse(model: type[BaseModel], data: Any, provider: PaymentProvider, event_type: str):
    try:
        return model.model_validate(data if data is not None else {})
    except PydanticValidationError as e:
        first_error = e.errors()[0] if e.errors() else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", ()))
        logger.warning(
            "Malformed %s webhook payload: type=%s field=%s",
            provider.value,
            event_type,
            field,
        )
        raise ValidationError(
            f"Malformed {event_type} payload",
            field=f"data.{field}" if field else None,
        )


# =============================================================================
# Paystack
# =============================================================================

def _paystack_charge_success(event_type: str, data: Any) -> BillingEvent:
    charge = _parse(PaystackChargeData, data, PaymentProvider.PAYSTACK, event_type)
    plan = charge.plan_info
    has_plan = bool(plan.plan_code or plan.subscription_code or charge.plan.get("id"))
    customer = charge.customer

    return ChargeSucceeded(
        provider=PaymentProvider.PAYSTACK,
        event_type=event_type,
        reference=charge.reference,
        transaction_id=charge.id,
        amount=minor_to_major(charge.amount, charge.currency),
        currency=charge.currency.upper(),
        has_recurring_plan=has_plan,
        subscription_code=plan.subscription_code or charge.subscription_code,
        customer_code=customer.customer_code if customer else None,
        authorization_code=charge.authorization.authorization_code if charge.authorization else None,
        verification_id=charge.reference,
        **_with_email_fallback(checkout_metadata(charge.metadata), customer.email if customer else None),
    )


def _with_email_fallback(fields: dict[str, Any], email: Optional[str]) -> dict[str, Any]:
    if not fields.get("user_email") and email:
        fields["user_email"] = email
    return fields


def _paystack_subscription(event_cls) -> Callable[[str, Any], BillingEvent]:
    def handler(event_type: str, data: Any) -> BillingEvent:
        subscription = _parse(PaystackSubscriptionData, data, PaymentProvider.PAYSTACK, event_type)
        return event_cls(
            provider=PaymentProvider.PAYSTACK,
            event_type=event_type,
            subscription_code=subscription.subscription_code,
        )
    return handler


def _paystack_failure(event_type: str, data: Any) -> BillingEvent:
    failure = _parse(PaystackFailureData, data, PaymentProvider.PAYSTACK, event_type)
    return ChargeFailed(
        provider=PaymentProvider.PAYSTACK,
        event_type=event_type,
        subscription_code=failure.resolved_subscription_code,
        reference=failure.reference,
    )


PAYSTACK_HANDLERS = {
    "charge.success": _paystack_charge_success,
    "subscription.create": _paystack_subscription(SubscriptionCreated),
    "subscription.disable": _paystack_subscription(SubscriptionDisabled),
    "subscription.not_renew": _paystack_subscription(SubscriptionNotRenewing),
    "invoice.failed": _paystack_failure,
    "invoice.payment_failed": _paystack_failure,
    "charge.failed": _paystack_failure,
}


def parse_paystack_event(payload: dict[str, Any]) -> BillingEvent:
    event_type = payload.get("event") or ""
    handler = PAYSTACK_HANDLERS.get(event_type)
    if handler is None:
        return IgnoredEvent(provider=PaymentProvider.PAYSTACK, event_type=event_type or "unknown")
    return handler(event_type, payload.get("data"))


# =============================================================================
# Flutterwave
# =============================================================================

def _flutterwave_charge_completed(event_type: str, data: Any, payload: dict[str, Any]) -> BillingEvent:
    charge = _parse(FlutterwaveChargeData, data, PaymentProvider.FLUTTERWAVE, event_type)
    status = charge.status.strip().lower()
    plan_id = charge.payment_plan or charge.plan

    if status in SUCCESS_STATUSES:
        # v3 webhooks carry checkout meta at the top level as meta_data
        meta_data = payload.get("meta_data")
        metadata = {**(meta_data if isinstance(meta_data, dict) else {}), **charge.meta}
        return ChargeSucceeded(
            provider=PaymentProvider.FLUTTERWAVE,
            event_type=event_type,
            reference=charge.tx_ref,
            transaction_id=charge.id,
            amount=charge.amount,
            currency=charge.currency.upper(),
            has_recurring_plan=bool(plan_id),
            verification_id=charge.id,
            **checkout_metadata(metadata),
        )

    if status in FAILED_STATUSES:
        return ChargeFailed(
            provider=PaymentProvider.FLUTTERWAVE,
            event_type=event_type,
            subscription_code=charge.tx_ref if plan_id else None,
            reference=charge.tx_ref,
        )

    logger.info("Flutterwave charge %s in non-final status %s", charge.tx_ref, status)
    return IgnoredEvent(provider=PaymentProvider.FLUTTERWAVE, event_type=event_type)


def _flutterwave_subscription_cancelled(event_type: str, data: Any, payload: dict[str, Any]) -> BillingEvent:
    subscription = _parse(FlutterwaveSubscriptionData, data, PaymentProvider.FLUTTERWAVE, event_type)
    return SubscriptionDisabled(
        provider=PaymentProvider.FLUTTERWAVE,
        event_type=event_type,
        subscription_code=subscription.tx_ref or subscription.id,
    )


FLUTTERWAVE_HANDLERS = {
    "charge.completed": _flutterwave_charge_completed,
    "subscription.cancelled": _flutterwave_subscription_cancelled,
}


def parse_flutterwave_event(payload: dict[str, Any]) -> BillingEvent:
    event_type = payload.get("event") or payload.get("event.type") or ""
    handler = FLUTTERWAVE_HANDLERS.get(event_type)
    if handler is None:
        return IgnoredEvent(provider=PaymentProvider.FLUTTERWAVE, event_type=event_type or "unknown")
    return handler(event_type, payload.get("data"), payload)


# =============================================================================
# Stripe
# =============================================================================

def _stripe_object(payload: dict[str, Any]) -> Any:
    data = payload.get("data")
    return data.get("object") if isinstance(data, dict) else None


def _stripe_checkout_completed(event_type: str, obj: Any) -> BillingEvent:
    session = _parse(StripeCheckoutSession, obj, PaymentProvider.STRIPE, event_type)

    # In subscription mode the first charge is ledgered from its invoice.paid
    amount = None
    if session.mode != "subscription":
        amount = minor_to_major(session.amount_total, session.currency)

    return ChargeSucceeded(
        provider=PaymentProvider.STRIPE,
        event_type=event_type,
        reference=session.payment_intent or session.id,
        transaction_id=session.payment_intent,
        amount=amount,
        currency=session.currency.upper() if session.currency else None,
        has_recurring_plan=bool(session.subscription),
        subscription_code=session.subscription,
        customer_code=session.customer,
        **checkout_metadata(session.metadata),
    )


def _stripe_invoice_paid(event_type: str, obj: Any) -> BillingEvent:
    invoice = _parse(StripeInvoice, obj, PaymentProvider.STRIPE, event_type)
    if not invoice.subscription:
        return IgnoredEvent(provider=PaymentProvider.STRIPE, event_type=event_type)

    return ChargeSucceeded(
        provider=PaymentProvider.STRIPE,
        event_type=event_type,
        reference=invoice.payment_intent or invoice.id,
        transaction_id=invoice.payment_intent,
        amount=minor_to_major(invoice.amount_paid, invoice.currency),
        currency=invoice.currency.upper() if invoice.currency else None,
        has_recurring_plan=True,
        subscription_code=invoice.subscription,
        customer_code=invoice.customer,
        **checkout_metadata(invoice.merged_metadata),
    )


def _stripe_subscription(event_cls) -> Callable[[str, Any], BillingEvent]:
    def handler(event_type: str, obj: Any) -> BillingEvent:
        subscription = _parse(StripeSubscription, obj, PaymentProvider.STRIPE, event_type)
        return event_cls(
            provider=PaymentProvider.STRIPE,
            event_type=event_type,
            subscription_code=subscription.id,
        )
    return handler


def _stripe_subscription_updated(event_type: str, obj: Any) -> BillingEvent:
    subscription = _parse(StripeSubscription, obj, PaymentProvider.STRIPE, event_type)
    if not subscription.cancel_at_period_end:
        return IgnoredEvent(provider=PaymentProvider.STRIPE, event_type=event_type)
    return SubscriptionNotRenewing(
        provider=PaymentProvider.STRIPE,
        event_type=event_type,
        subscription_code=subscription.id,
    )


def _stripe_invoice_failed(event_type: str, obj: Any) -> BillingEvent:
    invoice = _parse(StripeInvoice, obj, PaymentProvider.STRIPE, event_type)
    return ChargeFailed(
        provider=PaymentProvider.STRIPE,
        event_type=event_type,
        subscription_code=invoice.subscription,
        reference=invoice.payment_intent or invoice.id,
    )


STRIPE_HANDLERS = {
    "checkout.session.completed": _stripe_checkout_completed,
    "invoice.paid": _stripe_invoice_paid,
    "customer.subscription.created": _stripe_subscription(SubscriptionCreated),
    "customer.subscription.deleted": _stripe_subscription(SubscriptionDisabled),
    "customer.subscription.updated": _stripe_subscription_updated,
    "invoice.payment_failed": _stripe_invoice_failed,
}


def parse_stripe_event(payload: dict[str, Any]) -> BillingEvent:
    event_type = payload.get("type") or ""
    handler = STRIPE_HANDLERS.get(event_type)
    if handler is None:
        return IgnoredEvent(provider=PaymentProvider.STRIPE, event_type=event_type or "unknown")
    return handler(event_type, _stripe_object(payload))


EVENT_PARSERS: dict[PaymentProvider, Callable[[dict[str, Any]], BillingEvent]] = {
    PaymentProvider.PAYSTACK: parse_paystack_event,
    PaymentProvider.FLUTTERWAVE: parse_flutterwave_event,
    PaymentProvider.STRIPE: parse_stripe_event,
}


def parse_event(provider: PaymentProvider, payload: Any) -> BillingEvent:
    """Normalize a decoded webhook body for a provider."""
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object")
    return EVENT_PARSERS[PaymentProvider(provider)](payload)
