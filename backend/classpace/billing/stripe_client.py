"""Async Stripe API wrapper for Classpace billing."""

import logging

import stripe
from stripe import StripeClient

from classpace.billing.exceptions import ConfigurationError
from classpace.config import settings

logger = logging.getLogger(__name__)

# Metadata key written on customers created by checkout
USER_ID_METADATA_KEY = "supabase_user_id"


class StripeBillingSource:
    """Customer and subscription lookups against Stripe.

    Only :meth:`set_cancel_at_period_end` mutates anything in Stripe.
    """

    def __init__(
        self,
        secret_key: str,
        api_version: str | None = None,
        timeout: float = 10.0,
        client: StripeClient | None = None,
    ) -> None:
        if not secret_key and client is None:
            raise ConfigurationError("STRIPE_SECRET_KEY is not set")
        self._client = client or StripeClient(
            secret_key,
            stripe_version=api_version,
            http_client=stripe.HTTPXClient(timeout=timeout),
        )

    async def find_customer_id_by_email(self, email: str | None) -> str | None:
        """Return the first customer with this email, or None."""
        if not email:
            return None
        customers = await self._client.v1.customers.list_async(
            params={"email": email, "limit": 1}
        )
        if customers.data:
            return customers.data[0].id
        return None

    async def search_customer_id_by_user_id(self, user_id: str) -> str | None:
        """Return the first customer tagged with this user id, or None.

        A failing search is treated as no match; the Search API is not
        available in every account and region.
        """
        query = f"metadata['{USER_ID_METADATA_KEY}']:'{user_id}'"
        try:
            found = await self._client.v1.customers.search_async(
                params={"query": query, "limit": 1}
            )
        except stripe.StripeError as e:
            logger.info("Customer search by metadata failed for user %s: %s", user_id, e)
            return None
        if found.data:
            return found.data[0].id
        return None

    async def list_subscriptions(
        self, customer_id: str, limit: int
    ) -> list[stripe.Subscription]:
        """Most recent non-canceled subscriptions for a customer."""
        subscriptions = await self._client.v1.subscriptions.list_async(
            params={"customer": customer_id, "limit": limit}
        )
        return list(subscriptions.data)

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel_at_period_end: bool
    ) -> stripe.Subscription:
        """Schedule or clear cancellation at the end of the current period."""
        logger.info(
            "Setting cancel_at_period_end=%s on subscription %s",
            cancel_at_period_end,
            subscription_id,
        )
        return await self._client.v1.subscriptions.update_async(
            subscription_id,
            params={"cancel_at_period_end": cancel_at_period_end},
        )


def get_billing_source() -> StripeBillingSource:
    """Create a StripeBillingSource from application settings."""
    return StripeBillingSource(
        settings.stripe_secret_key,
        api_version=settings.stripe_api_version,
        timeout=settings.external_call_timeout_seconds,
    )
