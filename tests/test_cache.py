"""TTL cache and the account-status service built on it."""

import pytest

from pagewise.core.cache import TTLCache
from pagewise.domain import UserPreferences
from pagewise.services.account_status import AccountStatusService


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


class TestTTLCache:
    async def test_hit_within_ttl_skips_loader(self, clock):
        cache = TTLCache(clock=clock)
        calls = []

        async def loader():
            calls.append(1)
            return "value"

        assert await cache.get_or_refresh("k", 30, loader) == "value"
        clock.now += 29
        assert await cache.get_or_refresh("k", 30, loader) == "value"
        assert len(calls) == 1

    async def test_expiry_reloads(self, clock):
        cache = TTLCache(clock=clock)
        values = iter(["old", "new"])

        async def loader():
            return next(values)

        assert await cache.get_or_refresh("k", 30, loader) == "old"
        clock.now += 30
        assert cache.peek("k") is None
        assert await cache.get_or_refresh("k", 30, loader) == "new"

    async def test_loader_error_propagates_and_is_not_cached(self, clock):
        cache = TTLCache(clock=clock)

        async def broken():
            raise RuntimeError("db down")

        async def working():
            return 7

        with pytest.raises(RuntimeError):
            await cache.get_or_refresh("k", 30, broken)
        assert len(cache) == 0
        assert await cache.get_or_refresh("k", 30, working) == 7

    async def test_invalidate(self, clock):
        cache = TTLCache(clock=clock)

        async def loader():
            return 1

        await cache.get_or_refresh("k", 30, loader)
        cache.invalidate("k")
        assert cache.peek("k") is None


class TestAccountStatus:
    async def test_disabled_flag_is_cached_for_ttl(self, preferences, clock):
        await preferences.save(UserPreferences(owner_id="u1", account_disabled=True))
        service = AccountStatusService(preferences, cache=TTLCache(clock=clock))

        assert await service.is_disabled("u1") is True

        await preferences.save(UserPreferences(owner_id="u1", account_disabled=False))
        assert await service.is_disabled("u1") is True

        clock.now += 31
        assert await service.is_disabled("u1") is False

    async def test_unknown_owner_is_enabled(self, preferences):
        service = AccountStatusService(preferences)
        assert await service.is_disabled("nobody") is False
