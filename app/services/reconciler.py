"""
Subscription Reconciler
=======================

Folds canonical billing events into subscription, payment and entitlement
state.

Handles:
- Successful charges (subscription upsert, payment ledger, entitlement)
- Subscription lifecycle (created, disabled, will-not-renew)
- Failed charges (past_due)

Every handler is idempotent: replaying an event leaves the same rows as
processing it once.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from app.core.errors import ErrorCodes, NotFoundError, ValidationError
from app.models.subscription import (
    PAID_PLANS,
    BillingInterval,
    PlanTier,
    SubscriptionStatus,
)
from app.schemas.webhooks import (
    BillingEvent,
    ChargeFailed,
    ChargeSucceeded,
    IgnoredEvent,
    SubscriptionCreated,
    SubscriptionDisabled,
    SubscriptionNotRenewing,
)
from app.services.billing_period import compute_period_end
from app.services.billing_store import (
    BillingStore,
    PaymentRecord,
    SubscriptionRecord,
    SubscriptionUpsert,
)

logger = logging.getLogger(__name__)

TRIAL_CODE_PREFIX = "trial_"


class SubscriptionReconciler:
    """Apply billing events to a ``BillingStore``."""

    def __init__(
        self,
        store: BillingStore,
        trial_days=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.trial_days = trial_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._handlers: dict[type, Callable[..., Awaitable[Optional[SubscriptionRecord]]]] = {
            ChargeSucceeded: self.handle_charge_succeeded,
            SubscriptionCreated: self.handle_subscription_created,
            SubscriptionDisabled: self.handle_subscription_disabled,
            SubscriptionNotRenewing: self.handle_subscription_not_renewing,
            ChargeFailed: self.handle_charge_failed,
        }

    async def apply(self, event: BillingEvent) -> Optional[SubscriptionRecord]:
        """Route a canonical event to its handler; unknown kinds are acknowledged."""
        handler = self._handlers.get(type(event))
        if handler is None:
            return await self.handle_ignored(event)
        return await handler(event)

    # -------------------------------------------------------------------------
    # Success
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_metadata(event: ChargeSucceeded) -> None:
        if not event.user_id:
            raise ValidationError("Missing userId in payment metadata", field="metadata.userId")
        if not event.plan_id:
            raise ValidationError("Missing planId in payment metadata", field="metadata.planId")
        if event.plan_id not in PAID_PLANS:
            raise ValidationError(f"Invalid plan: {event.plan_id}", field="metadata.planId")

    def _subscription_values(self, event: ChargeSucceeded, now: datetime) -> Optional[SubscriptionUpsert]:
        if event.has_recurring_plan:
            interval = event.billing_interval
            if interval == BillingInterval.TRIAL:
                interval = BillingInterval.MONTHLY
            return SubscriptionUpsert(
                user_id=event.user_id,
                plan=event.plan_id,
                status=SubscriptionStatus.ACTIVE.value,
                provider=event.provider.value,
                provider_subscription_code=event.subscription_code or event.reference,
                current_period_start=now,
                current_period_end=compute_period_end(interval, now),
                cancel_at_period_end=False,
                provider_customer_code=event.customer_code,
                provider_authorization_code=event.authorization_code,
            )

        if event.billing_interval == BillingInterval.TRIAL:
            return SubscriptionUpsert(
                user_id=event.user_id,
                plan=event.plan_id,
                status=SubscriptionStatus.TRIALING.value,
                provider=event.provider.value,
                provider_subscription_code=f"{TRIAL_CODE_PREFIX}{event.reference}",
                current_period_start=now,
                current_period_end=compute_period_end(BillingInterval.TRIAL, now, self.trial_days),
                cancel_at_period_end=True,
                provider_customer_code=event.customer_code,
                provider_authorization_code=event.authorization_code,
            )

        return None

    async def handle_charge_succeeded(self, event: ChargeSucceeded) -> Optional[SubscriptionRecord]:
        """
        Record a verified successful charge.

        One-off charges land in the payment ledger only; the user tier is
        set only when a subscription row was written.

        Raises:
            ValidationError: userId or planId missing, nothing is written
        """
        self._require_metadata(event)
        now = self._clock()

        record = None
        values = self._subscription_values(event, now)
        if values is not None:
            record = await self.store.upsert_subscription(values)
            if record is None:
                logger.warning(
                    "Ignoring %s for canceled subscription %s (user=%s)",
                    event.event_type,
                    values.provider_subscription_code,
                    event.user_id,
                )
                return None

        if event.amount is not None and event.currency:
            await self.store.record_payment(
                PaymentRecord(
                    user_id=event.user_id,
                    amount=event.amount,
                    currency=event.currency,
                    provider=event.provider.value,
                    provider_reference=event.reference,
                    provider_transaction_id=event.transaction_id,
                    description=f"Subscription payment ({event.plan_id})",
                )
            )

        if record is None:
            # the tier only ever follows a subscription row
            logger.info(
                "One-off charge %s for user %s recorded without entitlement",
                event.reference,
                event.user_id,
            )
            return None

        updated = await self.store.set_user_tier(event.user_id, event.plan_id, event.customer_code)
        if not updated:
            logger.warning("No user row for %s; entitlement not updated", event.user_id)

        logger.info(
            "Charge reconciled: provider=%s ref=%s user=%s plan=%s code=%s",
            event.provider.value,
            event.reference,
            event.user_id,
            event.plan_id,
            record.provider_subscription_code,
        )
        return record

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def handle_subscription_created(self, event: SubscriptionCreated) -> None:
        # The first successful charge creates the row
        logger.info("Subscription created: provider=%s code=%s", event.provider.value, event.subscription_code)
        return None

    async def handle_subscription_disabled(self, event: SubscriptionDisabled) -> SubscriptionRecord:
        """
        Cancel a subscription and recompute the user's tier.

        The tier falls back to the plan of another live subscription the
        user holds, or free when there is none. Redelivering the disable
        for an already canceled row changes nothing.

        Raises:
            NotFoundError: no subscription with this code
        """
        record = await self.store.cancel_subscription(event.subscription_code)
        if record is None:
            existing = await self.store.get_subscription(event.subscription_code)
            if existing is None:
                logger.warning(
                    "Disable for unknown subscription: provider=%s code=%s",
                    event.provider.value,
                    event.subscription_code,
                )
                raise NotFoundError(
                    code=ErrorCodes.SUBSCRIPTION_NOT_FOUND,
                    message="Subscription not found",
                )
            logger.info("Subscription %s already canceled, acknowledging", event.subscription_code)
            return existing

        tier = await self.store.live_plan_for_user(record.user_id) or PlanTier.FREE.value
        await self.store.set_user_tier(record.user_id, tier)
        logger.info(
            "Subscription canceled: code=%s user=%s tier=%s",
            event.subscription_code,
            record.user_id,
            tier,
        )
        return record

    async def handle_subscription_not_renewing(self, event: SubscriptionNotRenewing) -> Optional[SubscriptionRecord]:
        record = await self.store.mark_not_renewing(event.subscription_code)
        if record is None:
            logger.info("not_renew for unknown subscription %s, acknowledging", event.subscription_code)
        return record

    async def handle_charge_failed(self, event: ChargeFailed) -> Optional[SubscriptionRecord]:
        if not event.subscription_code:
            logger.info(
                "Charge failure without subscription: provider=%s ref=%s",
                event.provider.value,
                event.reference,
            )
            return None

        record = await self.store.mark_past_due(event.subscription_code)
        if record is None:
            logger.info("Charge failure for unknown or canceled subscription %s", event.subscription_code)
        else:
            logger.info("Subscription past due: code=%s user=%s", event.subscription_code, record.user_id)
        return record

    async def handle_ignored(self, event: IgnoredEvent) -> None:
        logger.info("Webhook %s ignored: type=%s", event.provider.value, event.event_type)
        return None
