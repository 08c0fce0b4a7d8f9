"""Entitlement store: keyed upserts into the ``subscriptions`` table."""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import Insert, insert
from sqlalchemy.ext.asyncio import AsyncSession

from classpace.models.profile import Profile
from classpace.models.subscription import Subscription

logger = logging.getLogger(__name__)

# Columns overwritten when a row for the user already exists
_UPDATE_COLUMNS = (
    "tier",
    "status",
    "stripe_customer_id",
    "stripe_subscription_id",
    "current_period_end",
)


@dataclass(frozen=True)
class EntitlementRecord:
    """Values written for one principal by a reconciliation."""

    user_id: uuid.UUID
    tier: str
    status: str = "active"
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    current_period_end: datetime | None = None


def build_upsert(record: EntitlementRecord) -> Insert:
    """INSERT ... ON CONFLICT (user_id) DO UPDATE for one record."""
    stmt = insert(Subscription).values(**asdict(record))
    return stmt.on_conflict_do_update(
        index_elements=[Subscription.user_id],
        set_={
            **{column: stmt.excluded[column] for column in _UPDATE_COLUMNS},
            "updated_at": func.now(),
        },
    )


class EntitlementStore:
    """Writes entitlement rows; each upsert is committed on its own."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def upsert(self, record: EntitlementRecord) -> None:
        """Insert or overwrite the row for ``record.user_id``.

        Rolls back and re-raises if the write fails, leaving the session
        usable for the next principal.
        """
        try:
            await self._db.execute(build_upsert(record))
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        logger.debug(
            "Upserted entitlement for user %s: tier=%s, subscription=%s",
            record.user_id,
            record.tier,
            record.stripe_subscription_id,
        )

    async def get(self, user_id: uuid.UUID) -> Subscription | None:
        """Return the stored row for a user, if any."""
        result = await self._db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_role(self, user_id: uuid.UUID) -> str | None:
        """The role from the user's profile, or None if no profile exists."""
        result = await self._db.execute(
            select(Profile.role).where(Profile.id == user_id)
        )
        return result.scalar_one_or_none()
