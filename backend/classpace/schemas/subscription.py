"""Pydantic v2 response schemas for subscription endpoints."""

from datetime import datetime

from pydantic import BaseModel

# --- Response schemas ---


class TierResponse(BaseModel):
    """Tier details for display."""

    name: str
    display_name: str
    audience: str | None
    is_premium: bool
    features: list[str]


class TiersListResponse(BaseModel):
    """All available tiers."""

    tiers: list[TierResponse]


class ResumeResponse(BaseModel):
    """Result of clearing a pending cancellation."""

    success: bool = True
    next_renewal: datetime | None


class CancelResponse(BaseModel):
    """Result of scheduling cancellation at period end."""

    success: bool = True
    cancel_at: datetime | None


class CheckResponse(BaseModel):
    """The caller's entitlement after a refresh from Stripe."""

    subscribed: bool
    tier: str
    product_id: str | None
    subscription_end: datetime | None
    cancel_at_period_end: bool = False


class ErrorResponse(BaseModel):
    """Failure envelope. The message text is not a stable contract."""

    error: str
