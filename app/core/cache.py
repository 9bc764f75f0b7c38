import logging
from typing import Optional

import redis
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


def get_redis() -> Optional[redis.Redis]:
    global _client
    if not settings.redis_url:
        return None
    if _client is None:
        _client = redis.from_url(settings.redis_url, decode_responses=True)
    return _client


def _status_key(request_id: str) -> str:
    return f"security_request:{request_id}:status"


def get_cached_status(request_id: str) -> Optional[str]:
    r = get_redis()
    if r is None:
        return None
    try:
        return r.get(_status_key(request_id))
    except RedisError as exc:
        logger.warning("Status cache read failed for %s: %s", request_id, exc)
        return None


def cache_terminal_status(request_id: str, status: str) -> None:
    # Only terminal statuses are cached; they never change once written.
    r = get_redis()
    if r is None:
        return
    try:
        r.setex(_status_key(request_id), settings.status_cache_ttl_seconds, status)
    except RedisError as exc:
        logger.warning("Status cache write failed for %s: %s", request_id, exc)
