"""
TTL cache for dashboard views.
Uses Redis when CACHE_BACKEND=redis and the server answers, otherwise an in-process dictionary.
"""

import json
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import redis

from libdash.config import settings

logger = logging.getLogger(__name__)

MAX_MEMORY_ENTRIES = 1000


class CacheManager:
    """Cache with a Redis backend and an in-memory fallback."""

    def __init__(self, backend: Optional[str] = None, redis_url: Optional[str] = None,
                 default_ttl: Optional[int] = None):
        self.backend = (backend or settings.cache_backend).lower()
        self.default_ttl = default_ttl if default_ttl is not None else settings.cache_ttl
        self.redis_client = None
        self.memory_cache: Dict[str, Any] = {}
        self.memory_cache_lock = threading.RLock()
        self.cache_stats = {
            'hits': 0,
            'misses': 0,
            'redis_hits': 0,
            'memory_hits': 0,
        }
        if self.backend == "redis":
            self._init_redis(redis_url or settings.redis_url)

    def _init_redis(self, redis_url: str) -> None:
        try:
            self.redis_client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=1,
                socket_timeout=1,
            )
            self.redis_client.ping()
            logger.info("Redis cache connected at %s", redis_url)
        except redis.RedisError as e:
            logger.warning("Redis unavailable (%s), using the memory cache only", e)
            self.redis_client = None

    def _make_key(self, key: str) -> str:
        return f"libdash_cache:{key}"

    def get(self, key: str) -> Optional[Any]:
        if self.redis_client:
            try:
                data = self.redis_client.get(self._make_key(key))
                if data is not None:
                    self.cache_stats['hits'] += 1
                    self.cache_stats['redis_hits'] += 1
                    return json.loads(data)
            except redis.RedisError as e:
                logger.warning("Redis get error: %s", e)

        with self.memory_cache_lock:
            entry = self.memory_cache.get(key)
            if entry:
                value, expires_at = entry
                if datetime.now() < expires_at:
                    self.cache_stats['hits'] += 1
                    self.cache_stats['memory_hits'] += 1
                    return value
                del self.memory_cache[key]

        self.cache_stats['misses'] += 1
        return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Store a JSON-serializable value. Always kept in memory as well."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        redis_success = False
        if self.redis_client:
            try:
                self.redis_client.setex(self._make_key(key), ttl, json.dumps(value, default=str))
                redis_success = True
            except redis.RedisError as e:
                logger.warning("Redis set error: %s", e)

        with self.memory_cache_lock:
            self.memory_cache[key] = (value, datetime.now() + timedelta(seconds=ttl))
            if len(self.memory_cache) > MAX_MEMORY_ENTRIES:
                # Evict the 10% closest to expiry
                oldest = sorted(self.memory_cache.items(), key=lambda item: item[1][1])
                for k, _ in oldest[:MAX_MEMORY_ENTRIES // 10]:
                    self.memory_cache.pop(k, None)
        return redis_success or self.redis_client is None

    def delete(self, key: str) -> bool:
        redis_deleted = False
        if self.redis_client:
            try:
                redis_deleted = bool(self.redis_client.delete(self._make_key(key)))
            except redis.RedisError as e:
                logger.warning("Redis delete error: %s", e)

        with self.memory_cache_lock:
            memory_deleted = self.memory_cache.pop(key, None) is not None
        return redis_deleted or memory_deleted

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove keys matching a glob pattern. The memory cache matches on the prefix before '*'."""
        count = 0
        if self.redis_client:
            try:
                keys = self.redis_client.keys(self._make_key(pattern))
                if keys:
                    count += self.redis_client.delete(*keys)
            except redis.RedisError as e:
                logger.warning("Redis pattern invalidation error: %s", e)

        prefix = pattern.split('*', 1)[0]
        with self.memory_cache_lock:
            stale = [key for key in self.memory_cache if key.startswith(prefix)]
            for key in stale:
                self.memory_cache.pop(key, None)
        # Redis and memory hold the same keys; report the larger side
        return max(count, len(stale))

    def clear(self) -> None:
        if self.redis_client:
            try:
                keys = self.redis_client.keys(self._make_key("*"))
                if keys:
                    self.redis_client.delete(*keys)
            except redis.RedisError as e:
                logger.warning("Redis clear error: %s", e)
        with self.memory_cache_lock:
            self.memory_cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.cache_stats)
        stats['backend'] = self.backend
        stats['redis_available'] = self.redis_client is not None
        stats['memory_cache_size'] = len(self.memory_cache)
        total = stats['hits'] + stats['misses']
        stats['hit_ratio'] = stats['hits'] / total if total else 0.0
        return stats
