"""Tier definitions: entitlement levels and the product-to-tier table."""

from dataclasses import dataclass

from classpace.config import settings

FREE = "free"
TEACHER_PREMIUM = "teacher_premium"
STUDENT_PREMIUM = "student_premium"


@dataclass(frozen=True)
class TierInfo:
    """Display and feature-gate data for an entitlement tier."""

    name: str
    display_name: str
    audience: str | None  # "teacher", "student", None = everyone
    is_premium: bool
    features: tuple[str, ...]


TIERS: dict[str, TierInfo] = {
    FREE: TierInfo(
        name=FREE,
        display_name="Free Plan",
        audience=None,
        is_premium=False,
        features=(
            "1 AI Pod",
            "Core features enabled",
            "Create and run sessions",
            "Invite students",
            "Email support",
        ),
    ),
    TEACHER_PREMIUM: TierInfo(
        name=TEACHER_PREMIUM,
        display_name="Teach +",
        audience="teacher",
        is_premium=True,
        features=(
            "Unlimited AI Pods",
            "Advanced AI teaching assistant",
            "Comprehensive student analytics",
            "Priority support",
            "Faster refresh rates",
            "Bigger class sizes",
        ),
    ),
    STUDENT_PREMIUM: TierInfo(
        name=STUDENT_PREMIUM,
        display_name="Learn +",
        audience="student",
        is_premium=True,
        features=(
            "Unlimited AI tutoring with Phoenix",
            "Advanced homework image analysis",
            "Personalized learning insights",
            "Unlimited chat history storage",
            "Priority AI response time",
            "Early access to new features",
        ),
    ),
}


@dataclass(frozen=True)
class TierTable:
    """Static mapping of known Stripe product ids to premium tiers.

    ``fallback`` is returned for every other product id. ``None`` means
    unknown products grant nothing.
    """

    teacher_product_id: str
    student_product_id: str
    fallback: str | None = TEACHER_PREMIUM

    def lookup(self, product_id: str | None) -> str | None:
        """Return the tier for a known product id, or None if unrecognised."""
        if not product_id:
            return None
        if product_id == self.teacher_product_id:
            return TEACHER_PREMIUM
        if product_id == self.student_product_id:
            return STUDENT_PREMIUM
        return None

    def product_for_role(self, role: str | None) -> str:
        """Product a user of ``role`` is expected to subscribe to."""
        return self.teacher_product_id if role == "teacher" else self.student_product_id


def default_tier_table() -> TierTable:
    """Build the tier table from application settings."""
    return TierTable(
        teacher_product_id=settings.teacher_product_id,
        student_product_id=settings.student_product_id,
        fallback=settings.fallback_tier,
    )


def derive_tier(product_id: str | None, table: TierTable | None = None) -> str | None:
    """Map a subscription's product id to a tier.

    Never raises. Unknown, empty or missing product ids map to the table's
    fallback (``teacher_premium`` unless configured otherwise).
    """
    table = table or default_tier_table()
    tier = table.lookup(product_id)
    return tier if tier is not None else table.fallback


def derive_tier_for_role(
    product_id: str | None, role: str | None, table: TierTable | None = None
) -> str:
    """Like :func:`derive_tier`, but unknown products follow the user's role."""
    table = table or default_tier_table()
    tier = table.lookup(product_id)
    if tier is not None:
        return tier
    return TEACHER_PREMIUM if role == "teacher" else STUDENT_PREMIUM


def get_tier(tier_name: str | None) -> TierInfo:
    """Get tier info by name. Defaults to free if unknown."""
    return TIERS.get(tier_name or FREE, TIERS[FREE])


def is_premium(tier_name: str | None) -> bool:
    """Feature gate: does this tier unlock premium features?"""
    return get_tier(tier_name).is_premium
