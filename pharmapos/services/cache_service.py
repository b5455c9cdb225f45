"""
Redis cache for tenant catalog data read on every cart recalculation.
Provides tenant-isolated caching with graceful degradation.
"""

import logging
import json
from typing import Any, Optional, Callable, Dict
from datetime import datetime, date
from decimal import Decimal

import redis
from redis.exceptions import RedisError, ConnectionError, TimeoutError
from flask import Flask, current_app

logger = logging.getLogger(__name__)

# Cached modules
PROMOTIONS = 'promotions'
COMBOS = 'combos'


class CacheService:
    """
    Redis-based caching service with multi-tenant support.

    Keys pattern: {prefix}:tenant:{tenant_id}:{module}:{key}
    """

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self._enabled: bool = False
        self._prefix: str = ""

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Initialize Redis client from Flask app config."""
        self._enabled = app.config.get('CACHE_ENABLED', True)
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'pharmapos')
        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')

        if not self._enabled:
            logger.info("[CACHE] Cache is DISABLED via config")
            return

        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.client.ping()
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"[CACHE] Redis connection failed: {e}. Cache DISABLED.")
            self._enabled = False
            self.client = None

    def is_available(self) -> bool:
        if not self._enabled or not self.client:
            return False
        try:
            self.client.ping()
            return True
        except (ConnectionError, RedisError):
            return False

    def _build_key(self, tenant_id: int, module: str, key: str) -> str:
        return f"{self._prefix}:tenant:{tenant_id}:{module}:{key}"

    def _serialize(self, value: Any) -> str:
        """Serialize to JSON keeping Decimal precision and dates."""
        def default_handler(obj: Any) -> Any:
            if isinstance(obj, datetime):
                return {"__datetime__": obj.isoformat()}
            if isinstance(obj, date):
                return {"__date__": obj.isoformat()}
            if isinstance(obj, Decimal):
                return {"__decimal__": str(obj)}
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
        return json.dumps(value, default=default_handler)

    def _deserialize(self, value: str) -> Any:
        def object_hook(dct: Dict[str, Any]) -> Any:
            if "__decimal__" in dct:
                return Decimal(dct["__decimal__"])
            if "__datetime__" in dct:
                return datetime.fromisoformat(dct["__datetime__"])
            if "__date__" in dct:
                return date.fromisoformat(dct["__date__"])
            return dct
        return json.loads(value, object_hook=object_hook)

    def get(self, tenant_id: int, module: str, key: str) -> Optional[Any]:
        if not self.is_available():
            return None
        try:
            value = self.client.get(self._build_key(tenant_id, module, key))
            if value is None:
                return None
            return self._deserialize(value)
        except (RedisError, json.JSONDecodeError) as e:
            logger.warning(f"[CACHE] Get error: {e}")
            return None

    def set(self, tenant_id: int, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_available():
            return False
        try:
            if ttl is None:
                ttl = current_app.config.get('CACHE_DEFAULT_TTL', 60)
            self.client.setex(self._build_key(tenant_id, module, key), ttl, self._serialize(value))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Set error: {e}")
            return False

    def delete_pattern(self, tenant_id: int, module: str, pattern: str = "*") -> int:
        """Delete all keys matching a pattern for a tenant/module."""
        if not self.is_available():
            return 0
        try:
            full_pattern = self._build_key(tenant_id, module, pattern)
            deleted_count = 0
            cursor = 0
            while True:
                cursor, keys = self.client.scan(cursor, match=full_pattern, count=100)
                if keys:
                    pipeline = self.client.pipeline()
                    for key in keys:
                        pipeline.delete(key)
                    pipeline.execute()
                    deleted_count += len(keys)
                if cursor == 0:
                    break
            if deleted_count > 0:
                logger.info(f"[CACHE] INVALIDATE: {full_pattern} ({deleted_count} keys)")
            return deleted_count
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidate error: {e}")
            return 0

    def memoize(self, tenant_id: int, module: str, key: str, loader_fn: Callable[[], Any],
                ttl: Optional[int] = None) -> Any:
        """Cache-aside: get from cache, or load and cache."""
        cached = self.get(tenant_id, module, key)
        if cached is not None:
            return cached
        value = loader_fn()
        self.set(tenant_id, module, key, value, ttl)
        return value

    def invalidate_module(self, tenant_id: int, module: str) -> int:
        return self.delete_pattern(tenant_id, module, "*")


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    """Initialize cache service singleton."""
    global _cache_service
    _cache_service = CacheService(app)
    if not hasattr(app, 'extensions'):
        app.extensions = {}
    app.extensions['cache'] = _cache_service


def get_cache() -> Optional[CacheService]:
    """Get cache service instance, or None outside an initialized app."""
    return _cache_service


def cached(tenant_id: int, module: str, key: str, loader_fn: Callable[[], Any],
           ttl_setting: str = 'CACHE_DEFAULT_TTL') -> Any:
    """Memoize through the app cache when one is configured, else just load."""
    cache = get_cache()
    if cache is None:
        return loader_fn()
    ttl = current_app.config.get(ttl_setting) if current_app else None
    return cache.memoize(tenant_id, module, key, loader_fn, ttl)


def invalidate(tenant_id: int, *modules: str) -> None:
    """Drop cached modules for a tenant."""
    cache = get_cache()
    if cache is None:
        return
    for module in modules:
        cache.invalidate_module(tenant_id, module)
