"""
Plan entitlement and monthly AI token budget.

The check is optimistic: admission reads the ledger, the call runs, and usage
is added afterwards. Concurrent requests can overshoot the budget by at most
one call each; the overshoot is logged, never rolled back.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..core.errors import QuotaExhausted, UpgradeRequired
from ..domain import UsageLedger, UserPreferences
from ..repositories.preferences import PreferencesRepository
from ..repositories.usage import UsageRepository, period_start

logger = logging.getLogger(__name__)

FREE_PLAN = "free"

AI_PLANS = frozenset({"pro_monthly", "pro_yearly", "founder_lifetime"})

MONTHLY_TOKEN_BUDGET = {
    "free": 0,
    "pro_monthly": 2_000_000,
    "pro_yearly": 2_000_000,
    "founder_lifetime": 2_000_000,
}

FREE_STORAGE_BYTES = 15 * 1024 * 1024
PAID_STORAGE_BYTES = 50_000_000_000

PLAN_STORAGE_LIMITS = {
    "free": FREE_STORAGE_BYTES,
    "pro_monthly": PAID_STORAGE_BYTES,
    "pro_yearly": PAID_STORAGE_BYTES,
    "founder_lifetime": PAID_STORAGE_BYTES,
}


def storage_limit(prefs: Optional[UserPreferences]) -> int:
    """Explicit override wins; otherwise the plan default (unknown plans get free)."""
    if prefs and prefs.storage_limit_bytes > 0:
        return prefs.storage_limit_bytes
    plan = prefs.subscription_plan if prefs else FREE_PLAN
    return PLAN_STORAGE_LIMITS.get(plan, FREE_STORAGE_BYTES)


@dataclass(frozen=True)
class QuotaStatus:
    plan: str
    limit: int
    used: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class QuotaGate:
    def __init__(
        self,
        preferences: PreferencesRepository,
        usage: UsageRepository,
        clock: Callable[[], datetime] = None,
    ):
        self._preferences = preferences
        self._usage = usage
        self._clock = clock

    def _period(self):
        return period_start(self._clock() if self._clock else None)

    async def plan_for(self, owner_id: str) -> str:
        prefs = await self._preferences.get(owner_id)
        return (prefs.subscription_plan if prefs else "") or FREE_PLAN

    async def require_entitlement(self, owner_id: str) -> str:
        """Plan name if it includes the assistant; UpgradeRequired otherwise."""
        plan = await self.plan_for(owner_id)
        if plan not in AI_PLANS:
            raise UpgradeRequired()
        return plan

    async def check(self, owner_id: str) -> QuotaStatus:
        plan = await self.require_entitlement(owner_id)
        limit = MONTHLY_TOKEN_BUDGET.get(plan, 0)
        if limit <= 0:
            raise UpgradeRequired()

        ledger = await self._usage.ensure(owner_id, self._period())
        if ledger.tokens_used >= limit:
            logger.info("Owner %s over monthly budget (%d/%d)", owner_id, ledger.tokens_used, limit)
            raise QuotaExhausted()
        return QuotaStatus(plan=plan, limit=limit, used=ledger.tokens_used)

    async def record(
        self, owner_id: str, tokens_in: int, tokens_out: int, limit: int = 0
    ) -> UsageLedger:
        ledger = await self._usage.increment(owner_id, self._period(), tokens_in, tokens_out)
        if limit and ledger.tokens_used > limit:
            logger.warning(
                "Owner %s exceeded monthly budget after call (%d/%d)",
                owner_id, ledger.tokens_used, limit,
            )
        return ledger
