"""
Monthly usage ledger. Rows are created lazily and only ever incremented.
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select, update

from ..domain import UsageLedger
from ..models import UsageLedger as LedgerRow
from ..models.base import new_uuid, utcnow
from .base import Repository, dialect_insert


def period_start(now: Optional[datetime] = None) -> date:
    """First day of the calendar month (UTC)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return date(now.year, now.month, 1)


def _ledger(row: LedgerRow) -> UsageLedger:
    return UsageLedger(
        id=row.id,
        owner_id=row.owner_id,
        period_start=row.period_start,
        tokens_in=row.tokens_in or 0,
        tokens_out=row.tokens_out or 0,
        request_count=row.request_count or 0,
    )


class UsageRepository(Repository):
    async def get(self, owner_id: str, period: date) -> Optional[UsageLedger]:
        async with self.session() as session:
            result = await session.execute(
                select(LedgerRow)
                .where(LedgerRow.owner_id == owner_id)
                .where(LedgerRow.period_start == period)
            )
            row = result.scalar_one_or_none()
            return _ledger(row) if row else None

    async def _insert_if_missing(self, session, owner_id: str, period: date) -> None:
        now = utcnow()
        stmt = dialect_insert(session, LedgerRow).values(
            id=new_uuid(),
            owner_id=owner_id,
            period_start=period,
            tokens_in=0,
            tokens_out=0,
            request_count=0,
            created_at=now,
            updated_at=now,
        )
        await session.execute(stmt.on_conflict_do_nothing(index_elements=["owner_id", "period_start"]))

    async def ensure(self, owner_id: str, period: date) -> UsageLedger:
        """Current row for (owner, period), created with zero counters if absent."""
        async with self.session() as session:
            await self._insert_if_missing(session, owner_id, period)
            await session.commit()
        ledger = await self.get(owner_id, period)
        assert ledger is not None
        return ledger

    async def increment(
        self, owner_id: str, period: date, tokens_in: int, tokens_out: int
    ) -> UsageLedger:
        """Atomic in-place increment; counters never decrease."""
        tokens_in = max(0, int(tokens_in))
        tokens_out = max(0, int(tokens_out))
        async with self.session() as session:
            await self._insert_if_missing(session, owner_id, period)
            await session.execute(
                update(LedgerRow)
                .where(LedgerRow.owner_id == owner_id)
                .where(LedgerRow.period_start == period)
                .values(
                    tokens_in=LedgerRow.tokens_in + tokens_in,
                    tokens_out=LedgerRow.tokens_out + tokens_out,
                    request_count=LedgerRow.request_count + 1,
                )
            )
            await session.commit()
        ledger = await self.get(owner_id, period)
        assert ledger is not None
        return ledger
