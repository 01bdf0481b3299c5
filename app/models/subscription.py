"""
Subscription Models
===================

SQLAlchemy model for provider subscriptions plus the billing enums shared
across the service.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    String,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin


class PlanTier(str, Enum):
    """Entitlement tiers."""
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"


PAID_PLANS = (PlanTier.PRO.value, PlanTier.BUSINESS.value)


class SubscriptionStatus(str, Enum):
    """Subscription status values."""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class BillingInterval(str, Enum):
    """How long a successful charge buys."""
    MONTHLY = "monthly"
    YEARLY = "yearly"
    TRIAL = "trial"


class PaymentProvider(str, Enum):
    """Supported payment providers."""
    PAYSTACK = "paystack"
    FLUTTERWAVE = "flutterwave"
    STRIPE = "stripe"


class Subscription(Base, TimestampMixin):
    """
    One row per provider subscription code.

    Rows are never deleted; cancellation is a status transition.
    """

    __tablename__ = "subscriptions"

    # Primary Key
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
    )

    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)

    # Provider identifiers
    provider_subscription_code: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    provider_customer_code: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    provider_authorization_code: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    # Billing period
    current_period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    current_period_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "plan IN ('pro', 'business')",
            name="ck_subscriptions_plan",
        ),
        CheckConstraint(
            "status IN ('trialing', 'active', 'past_due', 'canceled')",
            name="ck_subscriptions_status",
        ),
        CheckConstraint(
            "current_period_end > current_period_start",
            name="ck_subscriptions_period",
        ),
        Index("idx_subscriptions_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(code={self.provider_subscription_code}, "
            f"plan={self.plan}, status={self.status})>"
        )
