"""
Disabled-account lookup with a short TTL cache in front of preferences.
"""

import logging

from ..core.cache import TTLCache
from ..repositories.preferences import PreferencesRepository

logger = logging.getLogger(__name__)

ACCOUNT_STATUS_TTL_SECONDS = 30.0


class AccountStatusService:
    def __init__(
        self,
        preferences: PreferencesRepository,
        cache: TTLCache[bool] = None,
        ttl: float = ACCOUNT_STATUS_TTL_SECONDS,
    ):
        self._preferences = preferences
        self._cache = cache if cache is not None else TTLCache()
        self._ttl = ttl

    async def _load(self, owner_id: str) -> bool:
        prefs = await self._preferences.get(owner_id)
        return bool(prefs and prefs.account_disabled)

    async def is_disabled(self, owner_id: str) -> bool:
        return await self._cache.get_or_refresh(owner_id, self._ttl, lambda: self._load(owner_id))

    def invalidate(self, owner_id: str) -> None:
        self._cache.invalidate(owner_id)


_service = None


def get_account_status_service() -> AccountStatusService:
    global _service
    if _service is None:
        _service = AccountStatusService(PreferencesRepository())
    return _service
