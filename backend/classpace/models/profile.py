"""Profile model: read-only view of the role a user signed up with."""

import uuid

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from classpace.database import Base


class Profile(Base):
    """Row in the ``profiles`` table; only the columns billing reads."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True)
    role: Mapped[str | None] = mapped_column(String(50), nullable=True)  # "teacher" or "learner"

    def __repr__(self) -> str:
        return f"<Profile id={self.id} role={self.role!r}>"
