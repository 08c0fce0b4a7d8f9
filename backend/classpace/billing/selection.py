"""Helpers that read Stripe subscription objects.

All functions here are pure: they accept Stripe objects (or anything with
the same attribute/bracket shape) and never call Stripe.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

import stripe

ELIGIBLE_STATUSES: frozenset[str] = frozenset({"active", "trialing"})


def ts_to_datetime(ts: int | None) -> datetime | None:
    """Convert a Stripe Unix timestamp to an aware UTC datetime."""
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _get_first_item(stripe_sub: stripe.Subscription):
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    try:
        sub_items = stripe_sub["items"]
    except (KeyError, AttributeError, TypeError):
        return None
    data = getattr(sub_items, "data", None) if sub_items else None
    if data:
        return data[0]
    return None


def get_product_id(stripe_sub: stripe.Subscription) -> str | None:
    """Extract the product id of the first line item.

    ``price.product`` is a plain id unless the caller expanded it, in which
    case it is a Product object.
    """
    item = _get_first_item(stripe_sub)
    price = getattr(item, "price", None) if item is not None else None
    product = getattr(price, "product", None) if price is not None else None
    if product is None or isinstance(product, str):
        return product or None
    return getattr(product, "id", None)


def get_period_end(stripe_sub: stripe.Subscription) -> datetime | None:
    """Current period end, from the subscription or its first item.

    In Stripe API 2025-08-27 (basil), current_period_end moved from the
    subscription object to the subscription item.
    """
    period_end = ts_to_datetime(getattr(stripe_sub, "current_period_end", None))
    if period_end is not None:
        return period_end
    item = _get_first_item(stripe_sub)
    if item is not None:
        return ts_to_datetime(getattr(item, "current_period_end", None))
    return None


def resolve_period_end(
    stripe_sub: stripe.Subscription,
    fallback_days: int,
    now: datetime | None = None,
) -> datetime:
    """Period end, else the scheduled cancellation, else now + ``fallback_days``."""
    period_end = get_period_end(stripe_sub)
    if period_end is not None:
        return period_end
    cancel_at = ts_to_datetime(getattr(stripe_sub, "cancel_at", None))
    if cancel_at is not None:
        return cancel_at
    now = now or datetime.now(timezone.utc)
    return now + timedelta(days=fallback_days)


def is_eligible(stripe_sub: stripe.Subscription) -> bool:
    """Active and trialing subscriptions grant an entitlement."""
    return getattr(stripe_sub, "status", None) in ELIGIBLE_STATUSES


def eligible_subscriptions(
    subscriptions: Iterable[stripe.Subscription],
) -> list[stripe.Subscription]:
    """Eligible subscriptions, in the order Stripe returned them."""
    return [s for s in subscriptions if is_eligible(s)]


def select_authoritative(
    subscriptions: Iterable[stripe.Subscription],
) -> stripe.Subscription | None:
    """First eligible subscription in list order. No recency sort is applied."""
    eligible = eligible_subscriptions(subscriptions)
    return eligible[0] if eligible else None


def select_pending_cancellation(
    subscriptions: Iterable[stripe.Subscription],
    cancel_at_period_end: bool,
) -> stripe.Subscription | None:
    """First eligible subscription whose cancel_at_period_end matches."""
    for sub in subscriptions:
        if is_eligible(sub) and bool(getattr(sub, "cancel_at_period_end", False)) is cancel_at_period_end:
            return sub
    return None


def select_for_refresh(
    eligible: Sequence[stripe.Subscription],
    preferred_product_id: str | None,
) -> stripe.Subscription | None:
    """Pick the subscription a user's entitlement should reflect.

    Subscriptions on the preferred product win over the rest. Within the
    pool, pending cancellations come first, then the latest period end.
    """
    matched = [s for s in eligible if get_product_id(s) == preferred_product_id]
    pool = matched or list(eligible)
    if not pool:
        return None

    def _sort_key(sub: stripe.Subscription) -> tuple[int, float]:
        period_end = get_period_end(sub)
        return (
            0 if getattr(sub, "cancel_at_period_end", False) else 1,
            -period_end.timestamp() if period_end is not None else 0.0,
        )

    return sorted(pool, key=_sort_key)[0]
