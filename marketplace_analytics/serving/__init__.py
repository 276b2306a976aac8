"""
Serving Module
"""
from .cache import (
    CacheManager,
    cache_get,
    cache_set,
    close_redis,
    get_redis,
    init_redis,
    make_cache_key,
)

__all__ = [
    "CacheManager",
    "init_redis",
    "close_redis",
    "get_redis",
    "cache_get",
    "cache_set",
    "make_cache_key",
]
