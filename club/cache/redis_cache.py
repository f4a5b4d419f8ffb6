"""
Redis Cache Service

Кэш для часто читаемых справочных данных (активные треки каталога).
Счетчики инвентаря и текущий цикл никогда не кэшируются: они читаются
один раз за сагу внутри транзакции.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis

from config.settings import Settings


class CacheConfig:
    """Cache keys and default TTLs."""

    ACTIVE_TRACKS_KEY = "club:tracks:active"
    ACTIVE_TRACKS_TTL = 120  # 2 minutes


class RedisCache:
    """
    Redis-based cache with JSON serialization.

    Any Redis failure degrades to a cache miss; callers always have a
    database fallback.
    """

    def __init__(self, settings: Settings, redis: Optional[Redis] = None):
        self.settings = settings
        self.redis: Optional[Redis] = redis
        self._enabled = redis is not None

        if self.redis is None and settings.REDIS_CACHE_ENABLED:
            self.redis = Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                password=settings.REDIS_PASSWORD,
                db=settings.REDIS_CACHE_DB,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
            )
            self._enabled = True
            logging.info(
                f"RedisCache initialized at {settings.REDIS_HOST}:{settings.REDIS_PORT}, "
                f"DB={settings.REDIS_CACHE_DB}"
            )
        elif self.redis is None:
            logging.info("RedisCache disabled by configuration")

    def is_enabled(self) -> bool:
        return self._enabled and self.redis is not None

    # ==================== Basic Cache Operations ====================

    async def get(self, key: str) -> Optional[Any]:
        if not self.is_enabled():
            return None
        try:
            value = await self.redis.get(key)
            if value is None:
                return None
            return json.loads(value)
        except Exception as e:
            logging.error(f"Cache GET error for key '{key}': {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_enabled():
            return False
        try:
            serialized = json.dumps(value)
            if ttl:
                await self.redis.setex(key, ttl, serialized)
            else:
                await self.redis.set(key, serialized)
            logging.debug(f"Cache SET: key='{key}', ttl={ttl}s")
            return True
        except Exception as e:
            logging.error(f"Cache SET error for key '{key}': {e}")
            return False

    # ==================== Domain-Specific Cache Methods ====================

    async def get_active_tracks(self) -> Optional[List[Dict[str, Any]]]:
        """Get cached active tracks as ``[{"id": ..., "value": ...}]``."""
        return await self.get(CacheConfig.ACTIVE_TRACKS_KEY)

    async def set_active_tracks(
        self,
        tracks: List[Dict[str, Any]],
        ttl: int = CacheConfig.ACTIVE_TRACKS_TTL,
    ) -> bool:
        return await self.set(CacheConfig.ACTIVE_TRACKS_KEY, tracks, ttl)

    async def close(self):
        if self.redis:
            try:
                await self.redis.aclose()
                logging.info("RedisCache connection closed")
            except Exception as e:
                logging.error(f"Error closing RedisCache: {e}")
