"""Plan entitlement, monthly budget and the usage ledger."""

from datetime import date, datetime, timezone

import pytest

from pagewise.core.errors import QuotaExhausted, UpgradeRequired
from pagewise.domain import UserPreferences
from pagewise.repositories.usage import period_start
from pagewise.services.quota import (
    FREE_STORAGE_BYTES,
    PAID_STORAGE_BYTES,
    QuotaGate,
    storage_limit,
)


def test_period_start_is_first_of_month_utc():
    assert period_start(datetime(2026, 3, 31, 23, 30, tzinfo=timezone.utc)) == date(2026, 3, 1)


class TestEntitlement:
    async def test_missing_preferences_is_free_plan(self, quota, usage):
        with pytest.raises(UpgradeRequired):
            await quota.check("stranger")
        assert await usage.get("stranger", period_start()) is None

    async def test_unknown_plan_requires_upgrade(self, quota, preferences):
        await preferences.save(UserPreferences(owner_id="u", subscription_plan="enterprise_trial"))
        with pytest.raises(UpgradeRequired):
            await quota.require_entitlement("u")

    async def test_paid_plan_creates_ledger_lazily(self, quota, usage, pro_user):
        status = await quota.check(pro_user)
        assert status.plan == "pro_monthly"
        assert status.limit == 2_000_000
        assert status.used == 0
        assert await usage.get(pro_user, period_start()) is not None


class TestBudget:
    async def test_exhausted_budget_rejects(self, quota, usage, pro_user):
        await usage.increment(pro_user, period_start(), 1_500_000, 500_000)
        with pytest.raises(QuotaExhausted):
            await quota.check(pro_user)

    async def test_record_increments_monotonically(self, quota, usage, pro_user):
        first = await quota.record(pro_user, 100, 20)
        second = await quota.record(pro_user, 50, 5)
        assert (first.tokens_in, first.tokens_out, first.request_count) == (100, 20, 1)
        assert (second.tokens_in, second.tokens_out, second.request_count) == (150, 25, 2)
        assert second.tokens_used >= first.tokens_used

    async def test_negative_usage_never_decreases_ledger(self, usage, pro_user):
        await usage.increment(pro_user, period_start(), 10, 10)
        ledger = await usage.increment(pro_user, period_start(), -50, -50)
        assert ledger.tokens_used == 20

    async def test_overshoot_is_accepted_and_logged(self, quota, usage, pro_user, caplog):
        await usage.increment(pro_user, period_start(), 1_999_990, 0)
        status = await quota.check(pro_user)
        ledger = await quota.record(pro_user, 100, 100, limit=status.limit)
        assert ledger.tokens_used > status.limit
        assert "exceeded monthly budget" in caplog.text

    async def test_periods_are_independent(self, preferences, usage, pro_user):
        march = QuotaGate(preferences, usage, clock=lambda: datetime(2026, 3, 15, tzinfo=timezone.utc))
        april = QuotaGate(preferences, usage, clock=lambda: datetime(2026, 4, 2, tzinfo=timezone.utc))
        await march.record(pro_user, 2_000_000, 0)

        with pytest.raises(QuotaExhausted):
            await march.check(pro_user)
        assert (await april.check(pro_user)).used == 0


class TestStorageLimit:
    def test_plan_defaults(self):
        assert storage_limit(None) == FREE_STORAGE_BYTES == 15 * 1024 * 1024
        assert storage_limit(UserPreferences(owner_id="u", subscription_plan="pro_yearly")) == PAID_STORAGE_BYTES

    def test_override_wins(self):
        prefs = UserPreferences(owner_id="u", subscription_plan="free", storage_limit_bytes=123)
        assert storage_limit(prefs) == 123
