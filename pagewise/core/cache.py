"""
Small in-process TTL cache with an explicit get-or-refresh entry point.

No per-key lock: two callers that miss at the same time both run the loader
and the last write wins. Staleness is bounded by the TTL.
"""

import time
from typing import Awaitable, Callable, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Per-key value + expiry. Loader errors propagate and are never cached."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: dict[Hashable, tuple[V, float]] = {}
        self._clock = clock

    def peek(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            return None
        return value

    async def get_or_refresh(
        self,
        key: Hashable,
        ttl: float,
        loader: Callable[[], Awaitable[V]],
    ) -> V:
        entry = self._entries.get(key)
        if entry is not None and self._clock() < entry[1]:
            return entry[0]

        value = await loader()
        self._entries[key] = (value, self._clock() + ttl)
        return value

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
