"""
Counter Store

Atomic counter and sorted-set primitives behind a protocol, with the Redis
implementation used in production.
"""

from typing import Optional, Protocol

import structlog
from prometheus_client import Counter
from redis.asyncio import Redis
from redis.exceptions import RedisError

from marketplace_analytics.errors import CounterStoreUnavailable

logger = structlog.get_logger(__name__)


COUNTER_STORE_FAILURES = Counter(
    "analytics_counter_store_failures_total",
    "Counter store operations that raised",
    ["operation"],
)


def _score_bound(score: float):
    if score == float("inf"):
        return "+inf"
    if score == float("-inf"):
        return "-inf"
    return score


class CounterStore(Protocol):
    """Server-side atomic operations needed by the real-time counters."""

    async def increment(self, key: str) -> int: ...

    async def increment_float(self, key: str, amount: float) -> float: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def expire(self, key: str, ttl_seconds: int) -> None: ...

    async def ttl(self, key: str) -> int: ...

    async def sorted_set_add(self, key: str, score: float, member: str) -> None: ...

    async def sorted_set_evict_before(self, key: str, cutoff: float) -> int: ...

    async def sorted_set_count_in_range(self, key: str, min_score: float, max_score: float) -> int: ...


class RedisCounterStore:
    """
    CounterStore on redis.asyncio.

    Every Redis error surfaces as CounterStoreUnavailable.
    """

    def __init__(self, client: Redis):
        self._client = client

    async def _call(self, operation: str, key: str, coro):
        try:
            return await coro
        except RedisError as e:
            COUNTER_STORE_FAILURES.labels(operation=operation).inc()
            raise CounterStoreUnavailable(operation, key, e) from e

    async def increment(self, key: str) -> int:
        return int(await self._call("incr", key, self._client.incr(key)))

    async def increment_float(self, key: str, amount: float) -> float:
        return float(await self._call("incrbyfloat", key, self._client.incrbyfloat(key, amount)))

    async def get(self, key: str) -> Optional[str]:
        value = await self._call("get", key, self._client.get(key))
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self._call("expire", key, self._client.expire(key, ttl_seconds))

    async def ttl(self, key: str) -> int:
        return int(await self._call("ttl", key, self._client.ttl(key)))

    async def sorted_set_add(self, key: str, score: float, member: str) -> None:
        await self._call("zadd", key, self._client.zadd(key, {member: score}))

    async def sorted_set_evict_before(self, key: str, cutoff: float) -> int:
        return int(await self._call("zremrangebyscore", key, self._client.zremrangebyscore(key, "-inf", cutoff)))

    async def sorted_set_count_in_range(self, key: str, min_score: float, max_score: float) -> int:
        pending = self._client.zcount(key, _score_bound(min_score), _score_bound(max_score))
        return int(await self._call("zcount", key, pending))
