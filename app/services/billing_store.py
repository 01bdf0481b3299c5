"""
Billing Store
=============

Datastore operations used by the reconciler.

All writes are keyed by provider identifiers with unique constraints, so
concurrent or repeated deliveries converge on the same rows without any
read-then-write races.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payment import Payment, PaymentStatus
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.user import User

logger = logging.getLogger(__name__)

# Statuses that carry an entitlement
LIVE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


@dataclass
class SubscriptionUpsert:
    """Fields written by a verified success event."""

    user_id: str
    plan: str
    status: str
    provider: str
    provider_subscription_code: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    provider_customer_code: Optional[str] = None
    provider_authorization_code: Optional[str] = None


@dataclass
class SubscriptionRecord:
    """Row state returned by subscription writes."""

    user_id: str
    plan: str
    status: str
    provider_subscription_code: str
    cancel_at_period_end: bool
    current_period_end: datetime


@dataclass
class PaymentRecord:
    user_id: str
    amount: Decimal
    currency: str
    provider: str
    provider_reference: str
    provider_transaction_id: Optional[str] = None
    description: Optional[str] = None
    status: str = PaymentStatus.SUCCEEDED.value


class BillingStore(Protocol):
    """Persistence contract for reconciliation."""

    async def upsert_subscription(self, values: SubscriptionUpsert) -> Optional[SubscriptionRecord]:
        """Insert or update by code; None when the existing row is canceled."""

    async def record_payment(self, payment: PaymentRecord) -> bool:
        """Insert once per reference; never raises."""

    async def set_user_tier(
        self,
        user_id: str,
        tier: str,
        customer_code: Optional[str] = None,
    ) -> bool:
        """Update the entitlement; False when the user row does not exist."""

    async def cancel_subscription(self, code: str) -> Optional[SubscriptionRecord]:
        """Cancel a live subscription; None when missing or already canceled."""

    async def get_subscription(self, code: str) -> Optional[SubscriptionRecord]:
        ...

    async def live_plan_for_user(self, user_id: str) -> Optional[str]:
        """Plan of the user's most recently updated active or trialing subscription."""

    async def mark_not_renewing(self, code: str) -> Optional[SubscriptionRecord]:
        ...

    async def mark_past_due(self, code: str) -> Optional[SubscriptionRecord]:
        """Move a non-canceled subscription to past_due."""

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


_RETURNING = (
    Subscription.user_id,
    Subscription.plan,
    Subscription.status,
    Subscription.provider_subscription_code,
    Subscription.cancel_at_period_end,
    Subscription.current_period_end,
)


def _to_record(row) -> Optional[SubscriptionRecord]:
    if row is None:
        return None
    return SubscriptionRecord(
        user_id=row.user_id,
        plan=row.plan,
        status=row.status,
        provider_subscription_code=row.provider_subscription_code,
        cancel_at_period_end=row.cancel_at_period_end,
        current_period_end=row.current_period_end,
    )


class SqlAlchemyBillingStore:
    """PostgreSQL implementation on an ``AsyncSession``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert_subscription(self, values: SubscriptionUpsert) -> Optional[SubscriptionRecord]:
        stmt = insert(Subscription).values(
            user_id=values.user_id,
            plan=values.plan,
            status=values.status,
            provider=values.provider,
            provider_subscription_code=values.provider_subscription_code,
            provider_customer_code=values.provider_customer_code,
            provider_authorization_code=values.provider_authorization_code,
            current_period_start=values.current_period_start,
            current_period_end=values.current_period_end,
            cancel_at_period_end=values.cancel_at_period_end,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.provider_subscription_code],
            set_={
                "user_id": stmt.excluded.user_id,
                "plan": stmt.excluded.plan,
                "status": stmt.excluded.status,
                "provider": stmt.excluded.provider,
                "provider_customer_code": func.coalesce(
                    stmt.excluded.provider_customer_code,
                    Subscription.provider_customer_code,
                ),
                "provider_authorization_code": func.coalesce(
                    stmt.excluded.provider_authorization_code,
                    Subscription.provider_authorization_code,
                ),
                "current_period_start": stmt.excluded.current_period_start,
                "current_period_end": stmt.excluded.current_period_end,
                "cancel_at_period_end": stmt.excluded.cancel_at_period_end,
                "updated_at": func.now(),
            },
            # a late retry of an old success must not revive a canceled row
            where=Subscription.status != SubscriptionStatus.CANCELED.value,
        ).returning(*_RETURNING)

        result = await self.session.execute(stmt)
        return _to_record(result.first())

    async def record_payment(self, payment: PaymentRecord) -> bool:
        stmt = (
            insert(Payment)
            .values(
                user_id=payment.user_id,
                amount=payment.amount,
                currency=payment.currency,
                status=payment.status,
                provider=payment.provider,
                provider_reference=payment.provider_reference,
                provider_transaction_id=payment.provider_transaction_id,
                description=payment.description,
            )
            .on_conflict_do_nothing(index_elements=[Payment.provider_reference])
            .returning(Payment.id)
        )

        try:
            async with self.session.begin_nested():
                result = await self.session.execute(stmt)
                return result.first() is not None
        except SQLAlchemyError as e:
            logger.warning(
                "Payment ledger write failed for reference %s: %s",
                payment.provider_reference,
                e,
            )
            return False

    async def set_user_tier(
        self,
        user_id: str,
        tier: str,
        customer_code: Optional[str] = None,
    ) -> bool:
        values = {"subscription_tier": tier, "updated_at": func.now()}
        if customer_code:
            values["provider_customer_code"] = customer_code

        result = await self.session.execute(
            update(User).where(User.user_id == user_id).values(**values)
        )
        return result.rowcount > 0

    async def _update_by_code(self, code: str, *conditions, **values) -> Optional[SubscriptionRecord]:
        stmt = (
            update(Subscription)
            .where(Subscription.provider_subscription_code == code, *conditions)
            .values(updated_at=func.now(), **values)
            .returning(*_RETURNING)
        )
        result = await self.session.execute(stmt)
        return _to_record(result.first())

    async def cancel_subscription(self, code: str) -> Optional[SubscriptionRecord]:
        return await self._update_by_code(
            code,
            Subscription.status != SubscriptionStatus.CANCELED.value,
            status=SubscriptionStatus.CANCELED.value,
        )

    async def get_subscription(self, code: str) -> Optional[SubscriptionRecord]:
        result = await self.session.execute(
            select(*_RETURNING).where(Subscription.provider_subscription_code == code)
        )
        return _to_record(result.first())

    async def live_plan_for_user(self, user_id: str) -> Optional[str]:
        result = await self.session.execute(
            select(Subscription.plan)
            .where(
                Subscription.user_id == user_id,
                Subscription.status.in_(LIVE_STATUSES),
            )
            .order_by(Subscription.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def mark_not_renewing(self, code: str) -> Optional[SubscriptionRecord]:
        return await self._update_by_code(code, cancel_at_period_end=True)

    async def mark_past_due(self, code: str) -> Optional[SubscriptionRecord]:
        return await self._update_by_code(
            code,
            Subscription.status != SubscriptionStatus.CANCELED.value,
            status=SubscriptionStatus.PAST_DUE.value,
        )

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
