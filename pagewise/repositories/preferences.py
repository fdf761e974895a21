"""
User preferences lookup. A missing row means a free-plan user with defaults.
"""

from typing import Optional

from sqlalchemy import select

from ..domain import UserPreferences
from ..models import UserPreferences as PreferencesRow
from ..models.base import new_uuid, utcnow
from .base import Repository, dialect_insert


class PreferencesRepository(Repository):
    async def get(self, owner_id: str) -> Optional[UserPreferences]:
        async with self.session() as session:
            result = await session.execute(
                select(PreferencesRow).where(PreferencesRow.owner_id == owner_id)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return UserPreferences(
            owner_id=row.owner_id,
            subscription_plan=row.subscription_plan or "free",
            storage_limit_bytes=row.storage_limit_bytes or 0,
            account_disabled=bool(row.account_disabled),
        )

    async def save(self, prefs: UserPreferences) -> None:
        now = utcnow()
        async with self.session() as session:
            stmt = dialect_insert(session, PreferencesRow).values(
                id=new_uuid(),
                owner_id=prefs.owner_id,
                subscription_plan=prefs.subscription_plan,
                storage_limit_bytes=prefs.storage_limit_bytes,
                account_disabled=prefs.account_disabled,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["owner_id"],
                set_={
                    "subscription_plan": stmt.excluded.subscription_plan,
                    "storage_limit_bytes": stmt.excluded.storage_limit_bytes,
                    "account_disabled": stmt.excluded.account_disabled,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            await session.commit()
