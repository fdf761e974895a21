"""
Monthly AI token usage. One row per owner per calendar month.
"""

from datetime import date

from sqlalchemy import BigInteger, Date, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import OwnedBase


class UsageLedger(OwnedBase):
    __tablename__ = "usage_ledger"
    __table_args__ = (
        UniqueConstraint("owner_id", "period_start", name="uq_usage_ledger_owner_period"),
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    tokens_in: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tokens_out: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
