"""Shared API dependencies: single import point for all routers.

Re-exports the database session and the adapter factories so that router
modules can import everything they need from one place::

    from classpace.api.deps import build_reconciler, get_db, get_identity_directory
"""

from sqlalchemy.ext.asyncio import AsyncSession

from classpace.billing.stripe_client import get_billing_source
from classpace.database import get_db
from classpace.identity.directory import get_identity_directory
from classpace.services.entitlement_store import EntitlementStore
from classpace.services.reconciler import Reconciler


def bearer_token(authorization: str | None) -> str:
    """Strip the ``Bearer`` scheme from an Authorization header value."""
    if not authorization:
        return ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def build_reconciler(db: AsyncSession) -> Reconciler:
    """Reconciler for a single request, writing through ``db``."""
    return Reconciler(billing=get_billing_source(), store=EntitlementStore(db))


__all__ = [
    "bearer_token",
    "build_reconciler",
    "get_billing_source",
    "get_db",
    "get_identity_directory",
]
