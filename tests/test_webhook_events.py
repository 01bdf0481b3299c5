"""
Webhook Event Normalization Tests
=================================

Provider payloads to canonical events: success, lifecycle, failure and
unknown types for Paystack, Flutterwave and Stripe.
"""

from decimal import Decimal

import pytest

from app.core.errors import ValidationError
from app.models.subscription import BillingInterval, PaymentProvider
from app.schemas.webhooks import (
    ChargeFailed,
    ChargeSucceeded,
    IgnoredEvent,
    SubscriptionCreated,
    SubscriptionDisabled,
    SubscriptionNotRenewing,
)
from app.services.webhook_events import (
    checkout_metadata,
    minor_to_major,
    normalize_plan_id,
    parse_event,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _paystack_charge(**overrides) -> dict:
    data = {
        "id": 302961,
        "reference": "pro_user-1_1700000000000",
        "status": "success",
        "amount": 1500000,
        "currency": "NGN",
        "metadata": {"userId": "user-1", "planId": "pro", "billingInterval": "monthly"},
        "customer": {"customer_code": "CUS_abc", "email": "ada@example.com"},
        "authorization": {"authorization_code": "AUTH_xyz"},
        "plan": {},
    }
    data.update(overrides)
    return {"event": "charge.success", "data": data}


class TestHelpers:
    """Tests for metadata helpers"""

    @pytest.mark.parametrize(
        "label,expected",
        [("pro", "pro"), ("PRO", "pro"), ("Business Plan", "business"), ("free", "free"), (None, None)],
    )
    def test_normalize_plan_id(self, label, expected):
        assert normalize_plan_id(label) == expected

    def test_checkout_metadata_reads_camel_and_snake_case(self):
        fields = checkout_metadata({"user_id": "u1", "planId": "business", "interval": "annual"})
        assert fields["user_id"] == "u1"
        assert fields["plan_id"] == "business"
        assert fields["billing_interval"] == BillingInterval.YEARLY
        assert fields["user_email"] is None

    def test_minor_to_major(self):
        assert minor_to_major(Decimal("1500000"), "NGN") == Decimal("15000.00")
        assert minor_to_major(None, "NGN") is None


# ---------------------------------------------------------------------------
# Paystack
# ---------------------------------------------------------------------------

class TestPaystackEvents:
    """Tests for Paystack payloads"""

    def test_charge_success_without_plan(self):
        event = parse_event(PaymentProvider.PAYSTACK, _paystack_charge())

        assert isinstance(event, ChargeSucceeded)
        assert event.reference == "pro_user-1_1700000000000"
        assert event.transaction_id == "302961"
        assert event.amount == Decimal("15000.00")
        assert event.currency == "NGN"
        assert event.user_id == "user-1"
        assert event.plan_id == "pro"
        assert event.has_recurring_plan is False
        assert event.customer_code == "CUS_abc"
        assert event.authorization_code == "AUTH_xyz"
        assert event.verification_id == event.reference

    def test_charge_success_with_plan(self):
        payload = _paystack_charge(plan={"plan_code": "PLN_pro", "subscription_code": "SUB_1"})
        event = parse_event(PaymentProvider.PAYSTACK, payload)

        assert event.has_recurring_plan is True
        assert event.subscription_code == "SUB_1"

    def test_email_falls_back_to_customer(self):
        event = parse_event(PaymentProvider.PAYSTACK, _paystack_charge())
        assert event.user_email == "ada@example.com"

    def test_empty_string_metadata_treated_as_empty(self):
        event = parse_event(PaymentProvider.PAYSTACK, _paystack_charge(metadata=""))
        assert event.user_id is None
        assert event.plan_id is None

    def test_charge_success_missing_reference_is_malformed(self):
        payload = _paystack_charge()
        del payload["data"]["reference"]
        with pytest.raises(ValidationError) as exc_info:
            parse_event(PaymentProvider.PAYSTACK, payload)
        assert exc_info.value.detail["field"] == "data.reference"

    @pytest.mark.parametrize(
        "event_type,cls",
        [
            ("subscription.create", SubscriptionCreated),
            ("subscription.disable", SubscriptionDisabled),
            ("subscription.not_renew", SubscriptionNotRenewing),
        ],
    )
    def test_subscription_lifecycle(self, event_type, cls):
        event = parse_event(
            PaymentProvider.PAYSTACK,
            {"event": event_type, "data": {"subscription_code": "SUB_1", "status": "active"}},
        )
        assert isinstance(event, cls)
        assert event.subscription_code == "SUB_1"

    def test_subscription_event_without_code_is_malformed(self):
        with pytest.raises(ValidationError):
            parse_event(PaymentProvider.PAYSTACK, {"event": "subscription.disable", "data": {}})

    def test_invoice_failure_resolves_nested_code(self):
        event = parse_event(
            PaymentProvider.PAYSTACK,
            {"event": "invoice.payment_failed", "data": {"subscription": {"subscription_code": "SUB_9"}}},
        )
        assert isinstance(event, ChargeFailed)
        assert event.subscription_code == "SUB_9"

    def test_charge_failed_without_subscription(self):
        event = parse_event(PaymentProvider.PAYSTACK, {"event": "charge.failed", "data": {"reference": "r1"}})
        assert isinstance(event, ChargeFailed)
        assert event.subscription_code is None
        assert event.reference == "r1"

    def test_unknown_event_ignored(self):
        event = parse_event(PaymentProvider.PAYSTACK, {"event": "transfer.success", "data": {}})
        assert isinstance(event, IgnoredEvent)
        assert event.event_type == "transfer.success"


# ---------------------------------------------------------------------------
# Flutterwave
# ---------------------------------------------------------------------------

class TestFlutterwaveEvents:
    """Tests for Flutterwave payloads"""

    def _charge(self, status="successful", **data_overrides) -> dict:
        data = {
            "id": 4975362,
            "tx_ref": "business_user-2_1700000000000",
            "flw_ref": "FLW-MOCK-1",
            "status": status,
            "amount": 45000,
            "currency": "ngn",
            "meta": {"userId": "user-2", "planId": "business"},
        }
        data.update(data_overrides)
        return {"event": "charge.completed", "data": data}

    def test_successful_charge(self):
        event = parse_event(PaymentProvider.FLUTTERWAVE, self._charge())

        assert isinstance(event, ChargeSucceeded)
        assert event.reference == "business_user-2_1700000000000"
        assert event.transaction_id == "4975362"
        assert event.verification_id == "4975362"
        assert event.amount == Decimal("45000")
        assert event.currency == "NGN"
        assert event.plan_id == "business"
        assert event.has_recurring_plan is False

    def test_top_level_meta_data_is_merged(self):
        payload = self._charge(meta={})
        payload["meta_data"] = {"userId": "user-2", "planId": "pro", "billingInterval": "yearly"}
        event = parse_event(PaymentProvider.FLUTTERWAVE, payload)

        assert event.user_id == "user-2"
        assert event.plan_id == "pro"
        assert event.billing_interval == BillingInterval.YEARLY

    def test_payment_plan_marks_recurring(self):
        event = parse_event(PaymentProvider.FLUTTERWAVE, self._charge(payment_plan=12345))
        assert event.has_recurring_plan is True

    def test_failed_recurring_charge(self):
        event = parse_event(PaymentProvider.FLUTTERWAVE, self._charge(status="failed", payment_plan=12345))
        assert isinstance(event, ChargeFailed)
        assert event.subscription_code == "business_user-2_1700000000000"

    def test_failed_one_off_charge_has_no_code(self):
        event = parse_event(PaymentProvider.FLUTTERWAVE, self._charge(status="failed"))
        assert isinstance(event, ChargeFailed)
        assert event.subscription_code is None

    def test_pending_charge_ignored(self):
        event = parse_event(PaymentProvider.FLUTTERWAVE, self._charge(status="pending"))
        assert isinstance(event, IgnoredEvent)

    def test_subscription_cancelled(self):
        event = parse_event(
            PaymentProvider.FLUTTERWAVE,
            {"event": "subscription.cancelled", "data": {"id": 77, "tx_ref": "pro_user-1_1"}},
        )
        assert isinstance(event, SubscriptionDisabled)
        assert event.subscription_code == "pro_user-1_1"

    def test_event_type_key(self):
        payload = self._charge()
        payload["event.type"] = payload.pop("event")
        assert isinstance(parse_event(PaymentProvider.FLUTTERWAVE, payload), ChargeSucceeded)


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------

class TestStripeEvents:
    """Tests for Stripe payloads"""

    def test_checkout_session_completed(self):
        payload = {
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_test_1",
                    "mode": "subscription",
                    "subscription": "sub_1",
                    "customer": "cus_1",
                    "payment_intent": None,
                    "amount_total": 900,
                    "currency": "usd",
                    "metadata": {"userId": "user-1", "planId": "pro", "billingInterval": "monthly"},
                }
            },
        }
        event = parse_event(PaymentProvider.STRIPE, payload)

        assert isinstance(event, ChargeSucceeded)
        assert event.reference == "cs_test_1"
        assert event.subscription_code == "sub_1"
        assert event.has_recurring_plan is True
        # the invoice.paid for the same charge carries the payment
        assert event.amount is None
        assert event.currency == "USD"

    def test_payment_mode_session_carries_amount(self):
        payload = {
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_test_2",
                    "mode": "payment",
                    "payment_intent": "pi_2",
                    "amount_total": 900,
                    "currency": "usd",
                    "metadata": {"userId": "user-1", "planId": "pro", "billingInterval": "trial"},
                }
            },
        }
        event = parse_event(PaymentProvider.STRIPE, payload)

        assert event.reference == "pi_2"
        assert event.amount == Decimal("9.00")
        assert event.has_recurring_plan is False

    def test_invoice_paid_without_subscription_ignored(self):
        payload = {"type": "invoice.paid", "data": {"object": {"id": "in_1"}}}
        assert isinstance(parse_event(PaymentProvider.STRIPE, payload), IgnoredEvent)

    def test_invoice_paid_reads_subscription_metadata(self):
        payload = {
            "type": "invoice.paid",
            "data": {
                "object": {
                    "id": "in_1",
                    "subscription": "sub_1",
                    "payment_intent": "pi_1",
                    "amount_paid": 9000,
                    "currency": "usd",
                    "subscription_details": {"metadata": {"userId": "user-1", "planId": "pro"}},
                }
            },
        }
        event = parse_event(PaymentProvider.STRIPE, payload)
        assert event.reference == "pi_1"
        assert event.user_id == "user-1"

    def test_subscription_updated_without_cancel_ignored(self):
        payload = {"type": "customer.subscription.updated", "data": {"object": {"id": "sub_1"}}}
        assert isinstance(parse_event(PaymentProvider.STRIPE, payload), IgnoredEvent)

    def test_subscription_updated_cancel_at_period_end(self):
        payload = {
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_1", "cancel_at_period_end": True}},
        }
        event = parse_event(PaymentProvider.STRIPE, payload)
        assert isinstance(event, SubscriptionNotRenewing)

    def test_subscription_deleted(self):
        payload = {"type": "customer.subscription.deleted", "data": {"object": {"id": "sub_1"}}}
        event = parse_event(PaymentProvider.STRIPE, payload)
        assert isinstance(event, SubscriptionDisabled)
        assert event.subscription_code == "sub_1"

    def test_invoice_payment_failed(self):
        payload = {"type": "invoice.payment_failed", "data": {"object": {"id": "in_2", "subscription": "sub_1"}}}
        event = parse_event(PaymentProvider.STRIPE, payload)
        assert isinstance(event, ChargeFailed)
        assert event.subscription_code == "sub_1"


def test_non_object_payload_rejected():
    with pytest.raises(ValidationError):
        parse_event(PaymentProvider.STRIPE, ["not", "an", "object"])


def test_canonical_events_are_immutable():
    event = parse_event(PaymentProvider.PAYSTACK, _paystack_charge())
    with pytest.raises(Exception):
        event.reference = "changed"
