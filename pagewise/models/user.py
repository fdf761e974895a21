"""
User preferences. Only the fields the core reads: subscription plan, storage
override and the account-disabled flag.
"""

from sqlalchemy import BigInteger, Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import OwnedBase


class UserPreferences(OwnedBase):
    __tablename__ = "user_preferences"
    __table_args__ = (
        UniqueConstraint("owner_id", name="uq_user_preferences_owner"),
    )

    subscription_plan: Mapped[str] = mapped_column(String, nullable=False, default="free")
    storage_limit_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    account_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
