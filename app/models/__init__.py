"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata for migrations.
"""

from app.models.subscription import (
    PAID_PLANS,
    BillingInterval,
    PaymentProvider,
    PlanTier,
    Subscription,
    SubscriptionStatus,
)
from app.models.payment import Payment, PaymentStatus
from app.models.user import User

__all__ = [
    # User
    "User",
    # Subscription
    "Subscription",
    "SubscriptionStatus",
    "PlanTier",
    "PAID_PLANS",
    "BillingInterval",
    "PaymentProvider",
    # Payment
    "Payment",
    "PaymentStatus",
]
