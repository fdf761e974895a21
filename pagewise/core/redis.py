"""
Owner-scoped realtime events over Redis pub/sub, or a silent no-op.
Controlled by FF_USE_REDIS.

Every event lands on `owner:{owner_id}` as
{"type": ..., "data": ..., "ts": <ISO-8601 UTC>}.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

_redis_client = None


def owner_channel(owner_id: str) -> str:
    return f"owner:{owner_id}"


def encode_event(event_type: str, data: Any = None) -> str:
    return json.dumps(
        {
            "type": event_type,
            "data": data,
            "ts": datetime.now(timezone.utc).isoformat(),
        },
        default=str,
    )


def _get_redis():
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis

        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
    return _redis_client


async def notify_owner(owner_id: str, event_type: str, data: Any = None) -> None:
    """Publish one event to the owner's channel. Failures are logged, never raised."""
    if not get_flags().use_redis:
        return
    if not get_settings().redis_url:
        logger.debug("REDIS_URL not set, dropping %s for %s", event_type, owner_id)
        return

    try:
        await _get_redis().publish(owner_channel(owner_id), encode_event(event_type, data))
    except Exception as e:
        logger.warning("Redis publish of %s for %s failed: %s", event_type, owner_id, e)


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
