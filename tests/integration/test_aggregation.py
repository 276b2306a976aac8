"""
Integration Tests for Daily Snapshot Aggregation
"""
from datetime import date, datetime

import pytest

from marketplace_analytics.aggregation import AggregationEngine
from marketplace_analytics.database.models import AnalyticsScope, ConversionEventType, TrafficSource
from marketplace_analytics.errors import AggregationError

PERIOD = date(2025, 3, 11)
IN_WINDOW = datetime(2025, 3, 11, 10, 0)


@pytest.fixture
def engine(event_store, snapshot_store, test_settings, clock) -> AggregationEngine:
    return AggregationEngine(event_store, snapshot_store, test_settings["aggregation"], clock=clock)


@pytest.fixture
async def seeded(event_store, add_views, add_order_line):
    """Two products and two sellers active on the period, plus noise outside it"""
    await add_views("p-1", count=2, at=IN_WINDOW, source=TrafficSource.SEARCH, country="US")
    await event_store.track_view("p-1", "s-9", user_id="u-1", viewed_at=IN_WINDOW, country="DE")
    await add_views("p-2", count=1, at=IN_WINDOW, country="US")
    await add_views("p-3", count=4, at=datetime(2025, 3, 12, 0, 0))

    for _ in range(2):
        await event_store.track_conversion(
            ConversionEventType.ADD_TO_CART, "s-9", "p-1", occurred_at=IN_WINDOW
        )
    await event_store.track_conversion(
        ConversionEventType.CHECKOUT_COMPLETED, "s-9", "p-1", occurred_at=IN_WINDOW
    )

    await add_order_line("o-1", "p-1", 20.0, at=IN_WINDOW, seller_id="seller-a")
    await add_order_line("o-2", "p-2", 10.0, at=IN_WINDOW, seller_id="seller-b")
    await add_order_line("o-3", "p-3", 50.0, at=datetime(2025, 3, 10, 23, 0), seller_id="seller-c")


class TestDailyAggregation:
    """Full run over one closed day"""

    async def test_writes_every_scope(self, engine, snapshot_store, seeded):
        result = await engine.run_daily_aggregation(PERIOD)

        assert result.succeeded
        assert result.platform_written
        assert result.sellers_written == 2
        assert result.products_written == 2
        assert await snapshot_store.count_snapshots(PERIOD, AnalyticsScope.SELLER) == 2
        assert await snapshot_store.count_snapshots(PERIOD, AnalyticsScope.PRODUCT) == 2

    async def test_platform_metrics(self, engine, snapshot_store, seeded):
        await engine.run_daily_aggregation(PERIOD)

        metrics = (await snapshot_store.get_snapshot(PERIOD, AnalyticsScope.PLATFORM)).metrics
        assert metrics.total_views == 4
        assert metrics.unique_visitors == 4
        assert metrics.purchase_count == 1
        assert metrics.conversion_rate == 25.0
        assert metrics.gross_revenue == pytest.approx(30.0)
        assert metrics.order_count == 2
        assert metrics.average_order_value == 15.0
        assert [(c.country, c.count) for c in metrics.top_countries] == [("US", 3), ("DE", 1)]
        assert {s.source: s.count for s in metrics.traffic_sources} == {"search": 2, "direct": 2}

    async def test_seller_and_product_metrics(self, engine, snapshot_store, seeded):
        await engine.run_daily_aggregation(PERIOD)

        seller = (await snapshot_store.get_snapshot(PERIOD, AnalyticsScope.SELLER, "seller-a")).metrics
        assert seller.gross_revenue == pytest.approx(20.0)
        assert seller.platform_fees == pytest.approx(2.0)
        assert seller.average_order_value == 20.0

        product = (await snapshot_store.get_snapshot(PERIOD, AnalyticsScope.PRODUCT, "p-1")).metrics
        assert product.views == 3
        assert product.add_to_cart_count == 2
        assert product.purchase_count == 1
        assert product.conversion_rate == 33.33
        assert product.cart_rate == 66.67

        assert await snapshot_store.get_snapshot(PERIOD, AnalyticsScope.PRODUCT, "p-3") is None

    async def test_rerun_is_idempotent(self, engine, snapshot_store, seeded):
        await engine.run_daily_aggregation(PERIOD)
        await engine.run_daily_aggregation(PERIOD)

        assert await snapshot_store.count_snapshots(PERIOD, AnalyticsScope.PLATFORM) == 1
        assert await snapshot_store.count_snapshots(PERIOD, AnalyticsScope.SELLER) == 2
        assert await snapshot_store.count_snapshots(PERIOD, AnalyticsScope.PRODUCT) == 2

    async def test_empty_day(self, engine, snapshot_store):
        result = await engine.run_daily_aggregation(PERIOD)

        assert result.succeeded
        assert result.sellers_written == 0
        metrics = (await snapshot_store.get_snapshot(PERIOD, AnalyticsScope.PLATFORM)).metrics
        assert metrics.total_views == 0
        assert metrics.conversion_rate == 0.0
        assert metrics.average_order_value == 0.0

    async def test_run_for_yesterday(self, engine, snapshot_store):
        result = await engine.run_for_yesterday()

        assert result.period == PERIOD
        assert await snapshot_store.get_snapshot(PERIOD, AnalyticsScope.PLATFORM) is not None


class TestFailureIsolation:
    """Entity failures are recorded, platform failures abort"""

    async def test_failing_product_does_not_stop_batch(self, engine, snapshot_store, seeded, monkeypatch):
        build = engine.build_product_metrics

        async def flaky(product_id, start, end):
            if product_id == "p-2":
                raise RuntimeError("boom")
            return await build(product_id, start, end)

        monkeypatch.setattr(engine, "build_product_metrics", flaky)

        result = await engine.run_daily_aggregation(PERIOD)

        assert result.succeeded
        assert result.products_written == 1
        assert [(f.scope, f.entity_id, f.error_type) for f in result.failures] == [
            ("product", "p-2", "RuntimeError")
        ]
        assert await snapshot_store.get_snapshot(PERIOD, AnalyticsScope.PRODUCT, "p-1") is not None
        assert await snapshot_store.count_snapshots(PERIOD, AnalyticsScope.SELLER) == 2

    async def test_platform_failure_aborts(self, engine, event_store, snapshot_store, seeded, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("database gone")

        monkeypatch.setattr(event_store, "count_views", broken)

        with pytest.raises(AggregationError) as exc_info:
            await engine.run_daily_aggregation(PERIOD)

        assert exc_info.value.period == PERIOD
        assert await snapshot_store.count_snapshots(PERIOD, AnalyticsScope.SELLER) == 0

    async def test_listing_failure_aborts(self, engine, event_store, seeded, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("timeout")

        monkeypatch.setattr(event_store, "get_distinct_products_with_views", broken)

        with pytest.raises(AggregationError):
            await engine.run_daily_aggregation(PERIOD)
