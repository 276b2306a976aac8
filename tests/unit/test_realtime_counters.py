"""
Unit Tests for Real-time Counters
"""
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from marketplace_analytics.counters import RealtimeCounters, RedisCounterStore
from marketplace_analytics.errors import CounterStoreUnavailable


@pytest.fixture
def now_ms(clock) -> int:
    return int((clock() - datetime(1970, 1, 1)).total_seconds() * 1000)


@pytest.fixture
def store() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def counters(store, clock) -> RealtimeCounters:
    return RealtimeCounters(store, clock=clock)


class TestKeys:
    """UTC day scoped keys"""

    def test_key_layout(self, counters):
        assert counters.view_count_key("p-1") == "analytics:views:p-1:2025-03-12"
        assert counters.sales_count_key() == "analytics:today:sales:2025-03-12"
        assert counters.revenue_key() == "analytics:today:revenue:2025-03-12"
        assert counters.active_viewers_key("p-1") == "analytics:active_viewers:p-1"


class TestIncrements:
    """Daily counters and their expiry"""

    async def test_first_view_sets_expiry(self, counters, store):
        store.increment.return_value = 1

        assert await counters.increment_product_view_count("p-1") == 1
        store.expire.assert_awaited_once_with("analytics:views:p-1:2025-03-12", 90000)

    async def test_later_views_keep_expiry(self, counters, store):
        store.increment.return_value = 7

        assert await counters.increment_product_view_count("p-1") == 7
        store.expire.assert_not_awaited()

    async def test_sales_count(self, counters, store):
        store.increment.return_value = 1
        assert await counters.increment_today_sales_count() == 1
        store.increment.assert_awaited_once_with("analytics:today:sales:2025-03-12")

    async def test_revenue_sets_missing_ttl(self, counters, store):
        store.increment_float.return_value = 42.5
        store.ttl.return_value = -1

        assert await counters.increment_today_revenue(42.5) == 42.5
        store.expire.assert_awaited_once_with("analytics:today:revenue:2025-03-12", 90000)

    async def test_revenue_keeps_existing_ttl(self, counters, store):
        store.increment_float.return_value = 60.0
        store.ttl.return_value = 3600

        await counters.increment_today_revenue(17.5)
        store.expire.assert_not_awaited()


class TestFailOpen:
    """Unavailable store never raises to callers"""

    async def test_increment_returns_none(self, counters, store):
        store.increment.side_effect = CounterStoreUnavailable("incr", "k", RedisConnectionError("down"))
        assert await counters.increment_product_view_count("p-1") is None

    async def test_revenue_returns_none(self, counters, store):
        store.increment_float.side_effect = CounterStoreUnavailable("incrbyfloat", "k")
        assert await counters.increment_today_revenue(5.0) is None

    async def test_reads_return_zero(self, counters, store):
        store.get.side_effect = CounterStoreUnavailable("get", "k")
        store.sorted_set_count_in_range.side_effect = CounterStoreUnavailable("zcount", "k")

        stats = await counters.get_today_stats()
        assert stats.sales_count == 0
        assert stats.revenue == 0.0
        assert await counters.get_active_viewers("p-1") == 0

    async def test_tracking_viewer_swallows_outage(self, counters, store):
        store.sorted_set_add.side_effect = CounterStoreUnavailable("zadd", "k")
        await counters.track_active_viewer("p-1", "s-1")
        store.sorted_set_evict_before.assert_not_awaited()


class TestActiveViewers:
    """Sliding five minute window"""

    async def test_track_adds_and_evicts(self, counters, store, now_ms):
        await counters.track_active_viewer("p-1", "s-1")

        key = "analytics:active_viewers:p-1"
        store.sorted_set_add.assert_awaited_once_with(key, now_ms, "s-1")
        store.sorted_set_evict_before.assert_awaited_once_with(key, now_ms - 300_000)
        store.expire.assert_awaited_once_with(key, 600)

    async def test_count_within_window(self, counters, store, now_ms):
        store.sorted_set_count_in_range.return_value = 3

        assert await counters.get_active_viewers("p-1") == 3
        store.sorted_set_count_in_range.assert_awaited_once_with(
            "analytics:active_viewers:p-1", now_ms - 300_000, float("inf")
        )


class TestTodayStats:
    """Reading the daily counters"""

    async def test_parses_values(self, counters, store):
        store.get.side_effect = ["3", "129.97"]

        stats = await counters.get_today_stats()
        assert stats.sales_count == 3
        assert stats.revenue == 129.97

    async def test_missing_keys(self, counters, store):
        store.get.return_value = None

        stats = await counters.get_today_stats()
        assert stats.sales_count == 0
        assert stats.revenue == 0.0


class TestRedisCounterStore:
    """redis.asyncio adapter"""

    async def test_redis_error_is_wrapped(self):
        client = AsyncMock()
        client.incr.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(CounterStoreUnavailable) as exc_info:
            await RedisCounterStore(client).increment("analytics:today:sales:2025-03-12")

        assert exc_info.value.operation == "incr"
        assert exc_info.value.key == "analytics:today:sales:2025-03-12"

    async def test_sorted_set_calls(self):
        client = AsyncMock()
        client.zcount.return_value = 2
        store = RedisCounterStore(client)

        await store.sorted_set_add("k", 1000, "s-1")
        await store.sorted_set_evict_before("k", 500)
        count = await store.sorted_set_count_in_range("k", 500, float("inf"))

        client.zadd.assert_awaited_once_with("k", {"s-1": 1000})
        client.zremrangebyscore.assert_awaited_once_with("k", "-inf", 500)
        client.zcount.assert_awaited_once_with("k", 500, "+inf")
        assert count == 2

    async def test_get_decodes_bytes(self):
        client = AsyncMock()
        client.get.return_value = b"12"
        assert await RedisCounterStore(client).get("k") == "12"
