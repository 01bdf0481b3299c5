"""
User Model
==========

The slice of the user account that billing owns.

User rows are created by the identity service; this service only ever
updates ``subscription_tier`` (the entitlement the feature gate reads) and
the provider customer code.
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin
from app.models.subscription import PlanTier


class User(Base, TimestampMixin):
    """User account with denormalized entitlement."""

    __tablename__ = "users"

    # Primary Key (opaque identity-provider id)
    user_id: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    # Entitlement
    subscription_tier: Mapped[str] = mapped_column(
        String(20),
        default=PlanTier.FREE.value,
        server_default=PlanTier.FREE.value,
        nullable=False,
    )

    provider_customer_code: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<User(user_id={self.user_id}, tier={self.subscription_tier})>"
