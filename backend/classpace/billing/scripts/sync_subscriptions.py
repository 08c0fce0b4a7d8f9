"""Sync Stripe subscriptions into the ``subscriptions`` table.

Run from the backend directory (or anywhere the package is installed):
    python -m classpace.billing.scripts.sync_subscriptions

Requires STRIPE_SECRET_KEY, SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY and a
DATABASE_URL that can write past row-level security. Safe to re-run;
principals without an active or trialing subscription are left as they are.
"""

import asyncio
import logging
import sys

from classpace.billing.exceptions import ConfigurationError
from classpace.billing.stripe_client import get_billing_source
from classpace.config import settings
from classpace.database import async_session_factory, engine
from classpace.identity.directory import get_identity_directory
from classpace.services.entitlement_store import EntitlementStore
from classpace.services.reconciler import Reconciler, SyncReport

logger = logging.getLogger("classpace.billing.sync")


async def run_sync() -> SyncReport:
    """Build the adapters from settings and reconcile every principal.

    Raises:
        ConfigurationError: Before any work, if a credential is missing.
    """
    billing = get_billing_source()
    directory = get_identity_directory()

    async with async_session_factory() as db:
        reconciler = Reconciler(
            billing=billing,
            store=EntitlementStore(db),
            directory=directory,
        )
        return await reconciler.sync_all()


async def main() -> int:
    try:
        report = await run_sync()
    except ConfigurationError as e:
        logger.error("Cannot start sync: %s", e)
        return 1
    except Exception:
        logger.exception("Subscription sync aborted")
        return 1
    finally:
        await engine.dispose()

    outcome = "incomplete" if report.incomplete else "complete"
    print(
        f"Sync {outcome}. Scanned: {report.scanned}  Updated: {report.updated}  "
        f"Skipped: {report.skipped}  Failed: {report.failed}"
    )
    return 1 if report.incomplete else 0


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(main()))
