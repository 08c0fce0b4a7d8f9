"""Subscription model: derived entitlement state per user."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from classpace.database import Base, TimestampMixin


class Subscription(TimestampMixin, Base):
    """One entitlement row per principal, overwritten on every reconciliation."""

    __tablename__ = "subscriptions"

    # Supabase auth user id; lives in the auth schema, so no foreign key here
    user_id: Mapped[uuid.UUID] = mapped_column(primary_key=True)

    # Tier & status
    tier: Mapped[str] = mapped_column(String(50), nullable=False, server_default="free")
    status: Mapped[str] = mapped_column(String(50), nullable=False, server_default="active")

    # Stripe identifiers
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Billing period
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Subscription(user_id={self.user_id}, tier={self.tier}, status={self.status})>"
