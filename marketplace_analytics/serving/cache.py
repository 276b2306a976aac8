"""
Redis Cache Module

Cache-aside layer for recommendations and reports with:
- Connection pooling
- Automatic serialization (JSON, pydantic models through TypeAdapter)
- TTL management
- Namespaced invalidation
- Fail-open reads and writes: a Redis outage or an uninitialised client
  degrades to direct computation
"""

import json
from datetime import date, datetime, timedelta
from enum import Enum
from functools import lru_cache
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from prometheus_client import Counter
from pydantic import TypeAdapter
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from marketplace_analytics.config import get_settings

logger = structlog.get_logger(__name__)

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None

# Redis down, or never initialised in this process
CACHE_UNAVAILABLE = (RedisError, RuntimeError)


# =============================================================================
# METRICS
# =============================================================================

CACHE_HITS = Counter(
    "analytics_cache_hits_total",
    "Cache lookups served from Redis",
    ["namespace"],
)

CACHE_MISSES = Counter(
    "analytics_cache_misses_total",
    "Cache lookups computed from the Event Store",
    ["namespace"],
)

CACHE_ERRORS = Counter(
    "analytics_cache_errors_total",
    "Cache operations that failed and were bypassed",
    ["namespace", "operation"],
)


# =============================================================================
# CONNECTION
# =============================================================================

async def init_redis() -> Redis:
    """Initialize Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=settings.redis.decode_responses,
    )

    _redis_client = Redis(connection_pool=_redis_pool)

    # Test connection
    try:
        await _redis_client.ping()
        logger.info("Redis connection established")
    except RedisError as e:
        logger.error("Redis connection failed", error=str(e))
        raise

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("Redis connection closed")


def get_redis() -> Redis:
    """Get Redis client instance"""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


# =============================================================================
# PRIMITIVES
# =============================================================================

async def cache_get(key: str, client: Optional[Redis] = None) -> Optional[Any]:
    """
    Get value from cache.

    Args:
        key: Cache key
        client: Redis client, defaults to the global one

    Returns:
        Cached value or None if not found
    """
    client = client or get_redis()
    value = await client.get(key)

    if value is None:
        return None

    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


async def cache_set(
    key: str,
    value: Any,
    ttl: Optional[Union[int, timedelta]] = None,
    client: Optional[Redis] = None,
) -> bool:
    """
    Set value in cache.

    Args:
        key: Cache key
        value: Value to cache (will be JSON serialized)
        ttl: Time-to-live in seconds or timedelta
        client: Redis client, defaults to the global one

    Returns:
        True if successful
    """
    client = client or get_redis()

    try:
        serialized = json.dumps(value, default=str)
    except (TypeError, ValueError) as e:
        logger.warning("Failed to serialize value for cache", key=key, error=str(e))
        return False

    if ttl:
        if isinstance(ttl, timedelta):
            ttl = int(ttl.total_seconds())
        await client.setex(key, ttl, serialized)
    else:
        await client.set(key, serialized)

    return True


async def cache_delete(key: str, client: Optional[Redis] = None) -> bool:
    """Delete key from cache"""
    client = client or get_redis()
    result = await client.delete(key)
    return result > 0


async def cache_delete_pattern(pattern: str, client: Optional[Redis] = None) -> int:
    """Delete all keys matching pattern"""
    client = client or get_redis()
    keys = [key async for key in client.scan_iter(match=pattern)]

    if not keys:
        return 0

    return await client.delete(*keys)


@lru_cache(maxsize=None)
def _type_adapter(model: Any) -> TypeAdapter:
    return TypeAdapter(model)


def _key_part(part: Any) -> str:
    if part is None:
        return "-"
    if isinstance(part, Enum):
        return str(part.value)
    if isinstance(part, (datetime, date)):
        return part.isoformat()
    if isinstance(part, (list, tuple)):
        return ",".join(_key_part(p) for p in part)
    return str(part)


def make_cache_key(*parts: Any) -> str:
    """
    Deterministic cache key from an operation name and its arguments.

    Example:
        make_cache_key("fbt", "p-1", 4) -> "fbt:p-1:4"
    """
    return ":".join(_key_part(part) for part in parts)


# =============================================================================
# CACHE MANAGER
# =============================================================================

class CacheManager:
    """
    Cache manager with namespace support and automatic key generation.

    Example:
        cache = CacheManager("recommendations", default_ttl=3600)
        items = await cache.get_or_set(
            make_cache_key("trending", 10),
            lambda: engine.compute_trending(10),
            model=List[RecommendedProduct],
        )
    """

    def __init__(self, namespace: str, default_ttl: int = 3600, client: Optional[Redis] = None):
        self.namespace = namespace
        self.default_ttl = default_ttl
        self._client = client

    @property
    def client(self) -> Redis:
        return self._client or get_redis()

    def _key(self, key: str) -> str:
        """Generate namespaced key"""
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        return await cache_get(self._key(key), client=self.client)

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        """Set value in cache"""
        return await cache_set(self._key(key), value, ttl or self.default_ttl, client=self.client)

    async def delete(self, key: str) -> bool:
        """Delete key from cache"""
        return await cache_delete(self._key(key), client=self.client)

    async def invalidate_all(self) -> int:
        """Invalidate all keys in namespace"""
        deleted = await cache_delete_pattern(f"{self.namespace}:*", client=self.client)
        logger.info("Cache namespace invalidated", namespace=self.namespace, deleted=deleted)
        return deleted

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
        model: Any = None,
    ) -> Any:
        """
        Get from cache or compute and cache.

        Args:
            key: Cache key
            factory: Async function to compute value if not cached
            ttl: Time-to-live
            model: Type of the value (pydantic model, List[...] etc.). When
                given the value is stored as JSON and validated back on hit.

        Returns:
            Cached or computed value
        """
        adapter = _type_adapter(model) if model is not None else None

        try:
            cached = await self.get(key)
        except CACHE_UNAVAILABLE as e:
            CACHE_ERRORS.labels(namespace=self.namespace, operation="get").inc()
            logger.warning("Cache read failed, computing directly", namespace=self.namespace, key=key, error=str(e))
            cached = None

        if cached is not None:
            CACHE_HITS.labels(namespace=self.namespace).inc()
            return adapter.validate_python(cached) if adapter else cached

        CACHE_MISSES.labels(namespace=self.namespace).inc()
        value = await factory()

        payload = adapter.dump_python(value, mode="json") if adapter else value
        try:
            await self.set(key, payload, ttl)
        except CACHE_UNAVAILABLE as e:
            CACHE_ERRORS.labels(namespace=self.namespace, operation="set").inc()
            logger.warning("Cache write failed", namespace=self.namespace, key=key, error=str(e))

        return value
