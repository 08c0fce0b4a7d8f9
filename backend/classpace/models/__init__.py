"""SQLAlchemy models for Classpace billing.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from classpace.models.profile import Profile
from classpace.models.subscription import Subscription

__all__ = [
    "Profile",
    "Subscription",
]
