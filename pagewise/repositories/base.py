"""
Shared repository plumbing.

Every operation opens its own AsyncSession from the factory, so concurrent
workers never share a session.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import get_session_factory


class Repository:
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._factory = session_factory

    def session(self) -> AsyncSession:
        if self._factory is None:
            self._factory = get_session_factory()
        return self._factory()


def dialect_insert(session: AsyncSession, model):
    """INSERT construct with on_conflict_* support for the bound dialect."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


def aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
