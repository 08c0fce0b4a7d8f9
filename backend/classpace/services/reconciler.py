"""Reconciler: derive entitlement rows from Stripe billing state.

Two kinds of entry point share the same rules:

* :meth:`Reconciler.sync_all` walks every principal in the directory and
  upserts a row for each one holding an eligible subscription. Principals
  without one are left untouched, and a failure for one principal never
  stops the run. A directory error mid-listing ends the run early with
  ``SyncReport.incomplete`` set.
* :meth:`Reconciler.resume_subscription`, :meth:`Reconciler.cancel_subscription`
  and :meth:`Reconciler.refresh_subscription` act for a single verified
  caller and raise on any problem.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from classpace.billing.exceptions import (
    ConfigurationError,
    CustomerNotFoundError,
    SubscriptionNotFoundError,
)
from classpace.billing.selection import (
    eligible_subscriptions,
    get_period_end,
    get_product_id,
    resolve_period_end,
    select_authoritative,
    select_for_refresh,
    select_pending_cancellation,
    ts_to_datetime,
)
from classpace.billing.stripe_client import StripeBillingSource
from classpace.billing.tiers import (
    FREE,
    TierTable,
    default_tier_table,
    derive_tier,
    derive_tier_for_role,
)
from classpace.config import settings
from classpace.identity.directory import Principal, SupabaseIdentityDirectory
from classpace.services.entitlement_store import EntitlementRecord, EntitlementStore

logger = logging.getLogger(__name__)

ACTIVE = "active"


@dataclass
class SyncReport:
    """Aggregate outcome of a batch run."""

    scanned: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    incomplete: bool = False


@dataclass(frozen=True)
class RefreshResult:
    """What the caller's entitlement was refreshed to."""

    subscribed: bool
    tier: str
    product_id: str | None = None
    subscription_end: datetime | None = None
    cancel_at_period_end: bool = False


class Reconciler:
    """Maps Stripe customers and subscriptions onto entitlement rows."""

    def __init__(
        self,
        billing: StripeBillingSource,
        store: EntitlementStore,
        directory: SupabaseIdentityDirectory | None = None,
        tier_table: TierTable | None = None,
        batch_subscription_limit: int | None = None,
        single_subscription_limit: int | None = None,
        period_end_fallback_days: int | None = None,
    ) -> None:
        self.billing = billing
        self.store = store
        self.directory = directory
        self.tier_table = tier_table or default_tier_table()
        self.batch_subscription_limit = (
            settings.batch_subscription_limit
            if batch_subscription_limit is None
            else batch_subscription_limit
        )
        self.single_subscription_limit = (
            settings.single_subscription_limit
            if single_subscription_limit is None
            else single_subscription_limit
        )
        self.period_end_fallback_days = (
            settings.period_end_fallback_days
            if period_end_fallback_days is None
            else period_end_fallback_days
        )

    # ------------------------------------------------------------------
    # Batch mode
    # ------------------------------------------------------------------

    async def sync_all(self) -> SyncReport:
        """Reconcile every principal in the directory, one at a time."""
        if self.directory is None:
            raise ValueError("sync_all requires an identity directory")

        report = SyncReport()
        logger.info("Starting subscription sync")

        try:
            async for principal in self.directory.iter_principals():
                await self._sync_one(principal, report)
        except ConfigurationError:
            raise
        except Exception:
            report.incomplete = True
            logger.exception(
                "Directory listing failed after %d principals; run is incomplete",
                report.scanned,
            )

        logger.info(
            "Sync %s: scanned=%d updated=%d skipped=%d failed=%d",
            "incomplete" if report.incomplete else "complete",
            report.scanned,
            report.updated,
            report.skipped,
            report.failed,
        )
        return report

    async def _sync_one(self, principal: Principal, report: SyncReport) -> None:
        report.scanned += 1
        try:
            written = await self.reconcile_principal(principal)
        except Exception:
            report.failed += 1
            logger.warning(
                "Skipping user %s after reconciliation error",
                principal.id,
                exc_info=True,
            )
            return

        if written:
            report.updated += 1
        else:
            report.skipped += 1

    async def reconcile_principal(self, principal: Principal) -> bool:
        """Upsert the principal's row from its first eligible subscription.

        Returns False (and writes nothing) when there is no customer, no
        eligible subscription, or the product grants no tier.
        """
        customer_id = await self.billing.find_customer_id_by_email(principal.email)
        if customer_id is None:
            customer_id = await self.billing.search_customer_id_by_user_id(principal.id)
        if customer_id is None:
            logger.debug("No Stripe customer for user %s", principal.id)
            return False

        subscriptions = await self.billing.list_subscriptions(
            customer_id, limit=self.batch_subscription_limit
        )
        subscription = select_authoritative(subscriptions)
        if subscription is None:
            logger.debug("Customer %s has no eligible subscription", customer_id)
            return False

        product_id = get_product_id(subscription)
        tier = derive_tier(product_id, self.tier_table)
        if tier is None:
            logger.warning(
                "Unrecognised product %s on subscription %s; no tier granted",
                product_id,
                subscription.id,
            )
            return False

        await self.store.upsert(
            EntitlementRecord(
                user_id=uuid.UUID(principal.id),
                tier=tier,
                status=ACTIVE,
                stripe_customer_id=customer_id,
                stripe_subscription_id=subscription.id,
                current_period_end=resolve_period_end(
                    subscription, self.period_end_fallback_days
                ),
            )
        )
        logger.debug("User %s reconciled to %s", principal.id, tier)
        return True

    # ------------------------------------------------------------------
    # Single-principal mode
    # ------------------------------------------------------------------

    async def _require_customer_by_email(self, principal: Principal) -> str:
        customer_id = await self.billing.find_customer_id_by_email(principal.email)
        if customer_id is None:
            raise CustomerNotFoundError("No Stripe customer found")
        logger.info("Found customer %s for user %s", customer_id, principal.id)
        return customer_id

    async def resume_subscription(self, principal: Principal) -> datetime | None:
        """Clear a pending cancellation; return the next renewal time.

        Raises:
            CustomerNotFoundError: No customer has the principal's email.
            SubscriptionNotFoundError: Nothing is scheduled to cancel.
        """
        customer_id = await self._require_customer_by_email(principal)
        subscriptions = await self.billing.list_subscriptions(
            customer_id, limit=self.single_subscription_limit
        )
        to_resume = select_pending_cancellation(subscriptions, cancel_at_period_end=True)
        if to_resume is None:
            raise SubscriptionNotFoundError("No cancellable subscription found to resume")

        updated = await self.billing.set_cancel_at_period_end(to_resume.id, False)
        next_renewal = get_period_end(updated)
        logger.info(
            "Subscription %s resumed, next renewal %s",
            updated.id,
            next_renewal.isoformat() if next_renewal else None,
        )
        return next_renewal

    async def cancel_subscription(self, principal: Principal) -> datetime | None:
        """Schedule cancellation at period end; return when access ends.

        Raises:
            CustomerNotFoundError: No customer has the principal's email.
            SubscriptionNotFoundError: No active subscription to cancel.
        """
        customer_id = await self._require_customer_by_email(principal)
        subscriptions = await self.billing.list_subscriptions(
            customer_id, limit=self.single_subscription_limit
        )
        to_cancel = select_pending_cancellation(subscriptions, cancel_at_period_end=False)
        if to_cancel is None:
            raise SubscriptionNotFoundError("No active subscription found to cancel")

        updated = await self.billing.set_cancel_at_period_end(to_cancel.id, True)
        cancel_at = ts_to_datetime(getattr(updated, "cancel_at", None)) or get_period_end(updated)
        logger.info(
            "Subscription %s set to cancel at %s",
            updated.id,
            cancel_at.isoformat() if cancel_at else None,
        )
        return cancel_at

    async def refresh_subscription(self, principal: Principal) -> RefreshResult:
        """Re-derive the caller's entitlement, downgrading to free if needed."""
        user_id = uuid.UUID(principal.id)

        customer_id = await self.billing.search_customer_id_by_user_id(principal.id)
        if customer_id is None:
            customer_id = await self.billing.find_customer_id_by_email(principal.email)

        if customer_id is None:
            logger.info("No customer for user %s, setting free tier", principal.id)
            await self.store.upsert(EntitlementRecord(user_id=user_id, tier=FREE, status=ACTIVE))
            return RefreshResult(subscribed=False, tier=FREE)

        subscriptions = await self.billing.list_subscriptions(
            customer_id, limit=self.single_subscription_limit
        )
        eligible = eligible_subscriptions(subscriptions)
        logger.info(
            "Customer %s has %d subscriptions, %d eligible",
            customer_id,
            len(subscriptions),
            len(eligible),
        )

        if not eligible:
            await self.store.upsert(
                EntitlementRecord(
                    user_id=user_id,
                    tier=FREE,
                    status=ACTIVE,
                    stripe_customer_id=customer_id,
                )
            )
            return RefreshResult(subscribed=False, tier=FREE)

        role = await self.store.get_role(user_id)
        subscription = select_for_refresh(eligible, self.tier_table.product_for_role(role))

        product_id = get_product_id(subscription)
        tier = derive_tier_for_role(product_id, role, self.tier_table)

        period_end = get_period_end(subscription)
        cancel_at_period_end = bool(getattr(subscription, "cancel_at_period_end", False))
        if period_end is None:
            logger.warning(
                "Subscription %s has no period end, using %d-day estimate",
                subscription.id,
                self.period_end_fallback_days,
            )
            period_end = datetime.now(timezone.utc) + timedelta(days=self.period_end_fallback_days)
            cancel_at_period_end = False

        await self.store.upsert(
            EntitlementRecord(
                user_id=user_id,
                tier=tier,
                status=ACTIVE,
                stripe_customer_id=customer_id,
                stripe_subscription_id=subscription.id,
                current_period_end=period_end,
            )
        )
        logger.info(
            "User %s refreshed: product=%s tier=%s role=%s",
            principal.id,
            product_id,
            tier,
            role,
        )
        return RefreshResult(
            subscribed=True,
            tier=tier,
            product_id=product_id,
            subscription_end=period_end,
            cancel_at_period_end=cancel_at_period_end,
        )
