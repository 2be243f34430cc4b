# clinipay/services/cache_service.py
"""
Cache Service for clinipay

JSON values in Redis under a TTL. One Redis client is shared by the process
and created on first use; if Redis cannot be reached the service falls back to
a per-instance dictionary so reads simply miss and the caller goes to the
database.
"""

from datetime import datetime, timedelta, timezone
import json
import logging
from threading import Lock
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends
import redis
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import get_db
from .base import BaseService

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

_client_lock = Lock()
_shared_client: Optional[Redis] = None
_redis_unavailable = False


def get_redis_client() -> Optional[Redis]:
    """Process-wide Redis client, or None when disabled (tests) or unreachable."""
    global _shared_client, _redis_unavailable
    if settings.is_testing or _redis_unavailable:
        return None
    if _shared_client is not None:
        return _shared_client

    with _client_lock:
        if _shared_client is None and not _redis_unavailable:
            try:
                client = redis.from_url(
                    settings.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=2,
                    retry_on_timeout=True,
                )
                client.ping()
                _shared_client = client
                logger.info("Connected to Redis cache")
            except (RedisError, ConnectionError) as e:
                logger.warning(f"Redis not available ({e}); caching in memory for this process")
                _redis_unavailable = True
    return _shared_client


class CacheService(BaseService):
    def __init__(self, db: Session, redis_client: Optional[Redis] = None):
        super().__init__(db)
        self.redis: Optional[Redis] = redis_client or get_redis_client()
        self._memory: Dict[str, Tuple[Any, datetime]] = {}

    @BaseService.measure_operation("cache_get")
    def get(self, key: str) -> Optional[Any]:
        if self.redis is None:
            entry = self._memory.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if datetime.now(timezone.utc) >= expires_at:
                del self._memory[key]
                return None
            return value

        try:
            raw = self.redis.get(key)
            return json.loads(raw) if raw is not None else None
        except (RedisError, ValueError) as e:
            logger.error(f"Cache read failed for {key}: {e}")
            return None

    @BaseService.measure_operation("cache_set")
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        seconds = ttl or DEFAULT_TTL_SECONDS
        if self.redis is None:
            self._memory[key] = (value, datetime.now(timezone.utc) + timedelta(seconds=seconds))
            return True

        try:
            self.redis.setex(key, seconds, json.dumps(value, default=str))
            return True
        except (RedisError, TypeError) as e:
            logger.error(f"Cache write failed for {key}: {e}")
            return False

    @BaseService.measure_operation("cache_delete")
    def delete(self, key: str) -> bool:
        if self.redis is None:
            return self._memory.pop(key, None) is not None

        try:
            return bool(self.redis.delete(key))
        except RedisError as e:
            logger.error(f"Cache delete failed for {key}: {e}")
            return False


def get_cache_service(db: Session = Depends(get_db)) -> CacheService:
    """FastAPI dependency providing a request-scoped cache service."""
    return CacheService(db)
