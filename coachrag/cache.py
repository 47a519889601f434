"""Redis helpers.

Provides:
- get_redis: Cached Redis client from REDIS_URL with decode_responses.
- advisory_lock: SET NX EX based lock so only one retention sweep runs at a time.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import redis

from coachrag.config import settings
from coachrag.utils import new_id

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Return a cached Redis client configured from settings.REDIS_URL.

    Returns:
        redis.Redis: Client with decode_responses=True.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


@contextmanager
def advisory_lock(client: redis.Redis, key: str, ttl_seconds: int) -> Iterator[bool]:
    """Try to take a short-lived lock; yields whether it was acquired.

    The lock expires after ``ttl_seconds`` even if the holder dies. It is only
    released by the holder that set it.

    Args:
        client: Redis client.
        key: Lock key.
        ttl_seconds: Expiry of the lock.
    """
    token = new_id()
    acquired = bool(client.set(key, token, nx=True, ex=ttl_seconds))
    if not acquired:
        logger.info("lock %s is held elsewhere", key)
    try:
        yield acquired
    finally:
        if acquired and client.get(key) == token:
            client.delete(key)
