"""
Base models. RecordBase gives every row an id and timestamps; OwnedBase adds
the owner_id used for per-user isolation.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


class RecordBase(Base):
    """Abstract base with id + created/updated timestamps."""

    __abstract__ = True

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=new_uuid
    )
    # Python-side defaults keep microsecond ordering on SQLite too.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class OwnedBase(RecordBase):
    """Abstract base with owner_id on every row."""

    __abstract__ = True

    owner_id: Mapped[str] = mapped_column(
        String, nullable=False, index=True
    )
