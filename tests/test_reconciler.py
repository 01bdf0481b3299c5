"""
Subscription Reconciler Tests
=============================

Event application against the in-memory store:
- Recurring and trial success paths
- Replays leave state unchanged
- Metadata gate blocks all writes
- Cancellation, will-not-renew and past_due transitions
- A late success cannot revive a canceled subscription
- Payment ledger failures do not block entitlement
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.core.errors import ErrorCodes, NotFoundError, ValidationError
from app.models.subscription import BillingInterval, PaymentProvider
from app.schemas.webhooks import (
    ChargeFailed,
    ChargeSucceeded,
    IgnoredEvent,
    SubscriptionCreated,
    SubscriptionDisabled,
    SubscriptionNotRenewing,
)
from app.services.reconciler import SubscriptionReconciler
from tests.conftest import InMemoryBillingStore

NOW = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)


def _reconciler(store, trial_days=None) -> SubscriptionReconciler:
    return SubscriptionReconciler(store, trial_days=trial_days, clock=lambda: NOW)


def _success(**overrides) -> ChargeSucceeded:
    fields = dict(
        provider=PaymentProvider.PAYSTACK,
        event_type="charge.success",
        reference="pro_user-1_1706700000000",
        transaction_id="302961",
        amount=Decimal("15000.00"),
        currency="NGN",
        user_id="user-1",
        plan_id="pro",
        billing_interval=BillingInterval.MONTHLY,
        has_recurring_plan=True,
        subscription_code="SUB_abc",
        customer_code="CUS_abc",
        authorization_code="AUTH_abc",
    )
    fields.update(overrides)
    return ChargeSucceeded(**fields)


def _disable(code="SUB_abc") -> SubscriptionDisabled:
    return SubscriptionDisabled(
        provider=PaymentProvider.PAYSTACK,
        event_type="subscription.disable",
        subscription_code=code,
    )


class TestChargeSucceeded:
    """Tests for handle_charge_succeeded"""

    @pytest.mark.asyncio
    async def test_recurring_monthly_charge(self, store):
        await _reconciler(store).apply(_success())

        row = store.subscriptions["SUB_abc"]
        assert row["status"] == "active"
        assert row["plan"] == "pro"
        assert row["cancel_at_period_end"] is False
        assert row["current_period_start"] == NOW
        assert row["current_period_end"] == datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)

        payment = store.payments["pro_user-1_1706700000000"]
        assert payment.amount == Decimal("15000.00")
        assert payment.currency == "NGN"
        assert payment.status == "succeeded"
        assert payment.description == "Subscription payment (pro)"

        assert store.users["user-1"] == "pro"

    @pytest.mark.asyncio
    async def test_recurring_without_subscription_code_uses_reference(self, store):
        await _reconciler(store).apply(_success(subscription_code=None))
        assert "pro_user-1_1706700000000" in store.subscriptions

    @pytest.mark.asyncio
    async def test_yearly_period(self, store):
        await _reconciler(store).apply(_success(billing_interval=BillingInterval.YEARLY))
        row = store.subscriptions["SUB_abc"]
        assert row["current_period_end"] == datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_paid_trial(self, store):
        event = _success(
            reference="trialref",
            has_recurring_plan=False,
            subscription_code=None,
            billing_interval=BillingInterval.TRIAL,
            amount=Decimal("4500.00"),
        )
        await _reconciler(store, trial_days="14").apply(event)

        row = store.subscriptions["trial_trialref"]
        assert row["status"] == "trialing"
        assert row["cancel_at_period_end"] is True
        assert row["current_period_end"] == datetime(2024, 2, 14, 12, 0, tzinfo=timezone.utc)
        assert store.payments["trialref"].amount == Decimal("4500.00")
        assert store.users["user-1"] == "pro"

    @pytest.mark.asyncio
    async def test_one_off_charge_records_payment_only(self, store):
        result = await _reconciler(store).apply(_success(has_recurring_plan=False, subscription_code=None))

        assert result is None
        assert store.subscriptions == {}
        assert "pro_user-1_1706700000000" in store.payments
        assert store.users["user-1"] == "free"

    @pytest.mark.asyncio
    async def test_one_off_yearly_charge_grants_nothing(self, store):
        event = _success(
            has_recurring_plan=False,
            subscription_code=None,
            billing_interval=BillingInterval.YEARLY,
        )
        await _reconciler(store).apply(event)

        assert store.subscriptions == {}
        assert store.users["user-1"] == "free"

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, store):
        reconciler = _reconciler(store)
        for _ in range(5):
            await reconciler.apply(_success())

        assert len(store.subscriptions) == 1
        assert len(store.payments) == 1
        assert store.users["user-1"] == "pro"

    @pytest.mark.asyncio
    async def test_renewal_keeps_stored_customer_code(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success())
        await reconciler.apply(_success(reference="renewal_ref", customer_code=None, authorization_code=None))

        row = store.subscriptions["SUB_abc"]
        assert row["provider_customer_code"] == "CUS_abc"
        assert row["provider_authorization_code"] == "AUTH_abc"
        assert len(store.payments) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"user_id": None}, "metadata.userId"),
            ({"plan_id": None}, "metadata.planId"),
            ({"plan_id": "free"}, "metadata.planId"),
        ],
    )
    async def test_metadata_gate_writes_nothing(self, store, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            await _reconciler(store).apply(_success(**overrides))

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["field"] == field
        assert store.subscriptions == {}
        assert store.payments == {}
        assert store.users == {"user-1": "free", "user-2": "free"}

    @pytest.mark.asyncio
    async def test_ledger_failure_does_not_block_entitlement(self):
        store = InMemoryBillingStore(users={"user-1": "free"}, fail_payments=True)
        await _reconciler(store).apply(_success())

        assert store.payments == {}
        assert store.subscriptions["SUB_abc"]["status"] == "active"
        assert store.users["user-1"] == "pro"

    @pytest.mark.asyncio
    async def test_missing_user_row_is_tolerated(self):
        store = InMemoryBillingStore(users={})
        record = await _reconciler(store).apply(_success())

        assert record is not None
        assert store.subscriptions["SUB_abc"]["status"] == "active"

    @pytest.mark.asyncio
    async def test_late_success_does_not_revive_canceled(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success())
        await reconciler.apply(_disable())

        result = await reconciler.apply(_success(reference="late_ref"))

        assert result is None
        assert store.subscriptions["SUB_abc"]["status"] == "canceled"
        assert "late_ref" not in store.payments
        assert store.users["user-1"] == "free"


class TestLifecycle:
    """Tests for subscription lifecycle events"""

    @pytest.mark.asyncio
    async def test_created_is_noop(self, store):
        event = SubscriptionCreated(
            provider=PaymentProvider.PAYSTACK,
            event_type="subscription.create",
            subscription_code="SUB_abc",
        )
        assert await _reconciler(store).apply(event) is None
        assert store.subscriptions == {}

    @pytest.mark.asyncio
    async def test_disable_cancels_and_downgrades(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success())

        record = await reconciler.apply(_disable())

        assert record.status == "canceled"
        assert store.subscriptions["SUB_abc"]["status"] == "canceled"
        assert store.users["user-1"] == "free"

    @pytest.mark.asyncio
    async def test_disable_replay_stays_canceled(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success())
        await reconciler.apply(_disable())
        await reconciler.apply(_disable())

        assert store.subscriptions["SUB_abc"]["status"] == "canceled"
        assert store.users["user-1"] == "free"

    @pytest.mark.asyncio
    async def test_replayed_disable_keeps_newer_plan(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success(subscription_code="SUB_old", reference="ref_old"))
        await reconciler.apply(_disable("SUB_old"))
        await reconciler.apply(
            _success(subscription_code="SUB_new", reference="ref_new", plan_id="business")
        )

        record = await reconciler.apply(_disable("SUB_old"))

        assert record.status == "canceled"
        assert store.subscriptions["SUB_new"]["status"] == "active"
        assert store.users["user-1"] == "business"

    @pytest.mark.asyncio
    async def test_disable_falls_back_to_other_live_subscription(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success(subscription_code="SUB_pro", reference="ref_pro"))
        await reconciler.apply(
            _success(subscription_code="SUB_biz", reference="ref_biz", plan_id="business")
        )

        await reconciler.apply(_disable("SUB_biz"))

        assert store.subscriptions["SUB_pro"]["status"] == "active"
        assert store.users["user-1"] == "pro"

    @pytest.mark.asyncio
    async def test_disable_unknown_code_not_found(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            await _reconciler(store).apply(_disable("SUB_missing"))

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail["code"] == ErrorCodes.SUBSCRIPTION_NOT_FOUND
        assert store.users == {"user-1": "free", "user-2": "free"}

    @pytest.mark.asyncio
    async def test_not_renewing_keeps_status(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success())

        await reconciler.apply(
            SubscriptionNotRenewing(
                provider=PaymentProvider.PAYSTACK,
                event_type="subscription.not_renew",
                subscription_code="SUB_abc",
            )
        )

        row = store.subscriptions["SUB_abc"]
        assert row["cancel_at_period_end"] is True
        assert row["status"] == "active"
        assert store.users["user-1"] == "pro"

    @pytest.mark.asyncio
    async def test_not_renewing_unknown_code_acknowledged(self, store):
        event = SubscriptionNotRenewing(
            provider=PaymentProvider.STRIPE,
            event_type="customer.subscription.updated",
            subscription_code="sub_missing",
        )
        assert await _reconciler(store).apply(event) is None


class TestChargeFailed:
    """Tests for handle_charge_failed"""

    def _failed(self, code="SUB_abc") -> ChargeFailed:
        return ChargeFailed(
            provider=PaymentProvider.PAYSTACK,
            event_type="invoice.payment_failed",
            subscription_code=code,
        )

    @pytest.mark.asyncio
    async def test_marks_past_due(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success())
        await reconciler.apply(self._failed())

        assert store.subscriptions["SUB_abc"]["status"] == "past_due"
        # entitlement is left alone until the subscription is disabled
        assert store.users["user-1"] == "pro"

    @pytest.mark.asyncio
    async def test_does_not_touch_canceled(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success())
        await reconciler.apply(_disable())
        await reconciler.apply(self._failed())

        assert store.subscriptions["SUB_abc"]["status"] == "canceled"

    @pytest.mark.asyncio
    async def test_without_code_is_noop(self, store):
        assert await _reconciler(store).apply(self._failed(code=None)) is None
        assert store.subscriptions == {}

    @pytest.mark.asyncio
    async def test_success_after_past_due_reactivates(self, store):
        reconciler = _reconciler(store)
        await reconciler.apply(_success())
        await reconciler.apply(self._failed())
        await reconciler.apply(_success(reference="retry_ref"))

        assert store.subscriptions["SUB_abc"]["status"] == "active"


@pytest.mark.asyncio
async def test_ignored_event_is_acknowledged(store):
    event = IgnoredEvent(provider=PaymentProvider.STRIPE, event_type="customer.created")
    assert await _reconciler(store).apply(event) is None
    assert store.subscriptions == {} and store.payments == {}
