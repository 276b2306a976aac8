"""
Integration Tests for Event Store Queries
"""
from datetime import date, datetime

import pytest

from marketplace_analytics.database.models import (
    ConversionEventType,
    DeviceType,
    ReportGroupBy,
    TrafficSource,
)

DAY_START = datetime(2025, 3, 11)
DAY_END = datetime(2025, 3, 12)


class TestViews:
    """View counts over half-open windows"""

    async def test_window_is_half_open(self, event_store, add_views):
        await add_views("p-1", at=datetime(2025, 3, 10, 23, 59))
        await add_views("p-1", at=DAY_START)
        await add_views("p-1", at=datetime(2025, 3, 11, 23, 59, 59))
        await add_views("p-1", at=DAY_END)

        assert await event_store.count_views(DAY_START, DAY_END) == 2
        assert await event_store.count_views(DAY_START, DAY_END, product_id="p-2") == 0

    async def test_unique_visitors_prefer_user_id(self, event_store):
        at = datetime(2025, 3, 11, 9, 0)
        await event_store.track_view("p-1", "s-1", user_id="u-1", viewed_at=at)
        await event_store.track_view("p-1", "s-2", user_id="u-1", viewed_at=at)
        await event_store.track_view("p-1", "s-3", viewed_at=at)
        await event_store.track_view("p-2", "s-3", viewed_at=at)

        assert await event_store.count_unique_visitors(DAY_START, DAY_END) == 2
        assert await event_store.count_unique_visitors(DAY_START, DAY_END, product_id="p-1") == 2

    async def test_daily_view_counts(self, event_store, add_views):
        await add_views("p-1", count=2, at=datetime(2025, 3, 9, 8, 0))
        await add_views("p-2", count=3, at=datetime(2025, 3, 11, 14, 0))

        counts = await event_store.get_daily_view_counts(datetime(2025, 3, 9), DAY_END)
        assert counts == {date(2025, 3, 9): 2, date(2025, 3, 11): 3}

    async def test_view_velocity_ranking(self, event_store, add_views):
        at = datetime(2025, 3, 11, 9, 0)
        await add_views("p-b", count=2, at=at)
        await add_views("p-a", count=2, at=at)
        await add_views("p-c", count=5, at=at)

        ranked = await event_store.get_product_view_velocity(DAY_START, DAY_END, limit=2)
        assert [(r.product_id, r.view_count) for r in ranked] == [("p-c", 5), ("p-a", 2)]


class TestBreakdowns:
    """Traffic, device and country shares"""

    async def test_traffic_sources(self, event_store, add_views):
        at = datetime(2025, 3, 11, 9, 0)
        await add_views("p-1", count=3, at=at, source=TrafficSource.SEARCH)
        await add_views("p-1", count=1, at=at, source=TrafficSource.DIRECT)

        shares = await event_store.get_traffic_source_breakdown(DAY_START, DAY_END)
        assert [(s.source, s.count, s.percentage) for s in shares] == [
            ("search", 3, 75.0),
            ("direct", 1, 25.0),
        ]

    async def test_missing_device_is_unknown(self, event_store, add_views):
        at = datetime(2025, 3, 11, 9, 0)
        await add_views("p-1", count=2, at=at, device_type=DeviceType.MOBILE)
        await add_views("p-1", count=1, at=at)

        shares = await event_store.get_device_breakdown(DAY_START, DAY_END)
        assert [(s.device_type, s.count, s.percentage) for s in shares] == [
            ("mobile", 2, 66.67),
            ("unknown", 1, 33.33),
        ]

    async def test_countries_ordered_by_count(self, event_store, add_views):
        at = datetime(2025, 3, 11, 9, 0)
        await add_views("p-1", count=1, at=at, country="DE")
        await add_views("p-1", count=2, at=at, country="US")
        await add_views("p-1", count=1, at=at, country="BR")

        shares = await event_store.get_geographic_breakdown(DAY_START, DAY_END)
        assert [s.country for s in shares] == ["US", "BR", "DE"]

    async def test_empty_window(self, event_store):
        assert await event_store.get_traffic_source_breakdown(DAY_START, DAY_END) == []


class TestFunnel:
    """Funnel stage counts"""

    async def test_stages_are_zero_filled_and_ordered(self, event_store):
        at = datetime(2025, 3, 11, 10, 0)
        await event_store.track_conversion(ConversionEventType.VIEW, "s-1", "p-1", occurred_at=at)
        await event_store.track_conversion(ConversionEventType.VIEW, "s-2", "p-1", occurred_at=at)
        await event_store.track_conversion(ConversionEventType.CHECKOUT_COMPLETED, "s-1", "p-1", occurred_at=at)
        await event_store.track_conversion(ConversionEventType.REFUND_REQUESTED, "s-1", "p-1", occurred_at=at)

        funnel = await event_store.get_conversion_funnel(DAY_START, DAY_END)
        assert [(s.stage, s.count) for s in funnel] == [
            (ConversionEventType.VIEW, 2),
            (ConversionEventType.ADD_TO_CART, 0),
            (ConversionEventType.CHECKOUT_STARTED, 0),
            (ConversionEventType.CHECKOUT_COMPLETED, 1),
            (ConversionEventType.DOWNLOAD, 0),
        ]

    async def test_purchased_products_most_recent_first(self, event_store):
        completed = ConversionEventType.CHECKOUT_COMPLETED
        await event_store.track_conversion(completed, "s-1", "p-old", user_id="u-1", occurred_at=datetime(2025, 1, 5))
        await event_store.track_conversion(completed, "s-2", "p-new", user_id="u-1", occurred_at=datetime(2025, 3, 1))
        await event_store.track_conversion(
            ConversionEventType.ADD_TO_CART, "s-3", "p-cart", user_id="u-1", occurred_at=datetime(2025, 3, 2)
        )

        assert await event_store.get_user_purchased_products("u-1") == ["p-new", "p-old"]


class TestRevenue:
    """Summaries and bucketed series"""

    async def test_summary_counts_distinct_orders(self, event_store, add_order_line):
        at = datetime(2025, 3, 11, 10, 0)
        await add_order_line("o-1", "p-1", 20.0, at=at, seller_id="s-a")
        await add_order_line("o-1", "p-2", 10.0, at=at, seller_id="s-b")
        await add_order_line("o-2", "p-1", 20.0, at=at, seller_id="s-a")

        summary = await event_store.get_revenue_summary(DAY_START, DAY_END)
        assert summary.gross_revenue == pytest.approx(50.0)
        assert summary.platform_fees == pytest.approx(5.0)
        assert summary.order_count == 2

        seller = await event_store.get_revenue_summary(DAY_START, DAY_END, seller_id="s-b")
        assert seller.gross_revenue == pytest.approx(10.0)
        assert seller.order_count == 1

    async def test_empty_summary(self, event_store):
        summary = await event_store.get_revenue_summary(DAY_START, DAY_END)
        assert summary.gross_revenue == 0.0
        assert summary.order_count == 0

    async def test_weekly_buckets_start_on_monday(self, event_store, add_order_line):
        await add_order_line("o-1", "p-1", 10.0, at=datetime(2025, 3, 3, 9, 0))
        await add_order_line("o-2", "p-1", 15.0, at=datetime(2025, 3, 5, 9, 0))
        await add_order_line("o-3", "p-1", 30.0, at=datetime(2025, 3, 10, 9, 0))

        series = await event_store.get_revenue_time_series(
            datetime(2025, 3, 1), datetime(2025, 3, 15), ReportGroupBy.WEEK
        )
        assert [(p.period, p.gross_revenue, p.order_count) for p in series] == [
            ("2025-03-03", 25.0, 2),
            ("2025-03-10", 30.0, 1),
        ]

    async def test_monthly_and_daily_buckets(self, event_store, add_order_line):
        await add_order_line("o-1", "p-1", 10.0, at=datetime(2025, 2, 27, 9, 0))
        await add_order_line("o-2", "p-1", 15.0, at=datetime(2025, 3, 5, 9, 0))
        await add_order_line("o-3", "p-1", 5.0, at=datetime(2025, 3, 5, 18, 0))

        monthly = await event_store.get_revenue_time_series(
            datetime(2025, 2, 1), datetime(2025, 4, 1), ReportGroupBy.MONTH
        )
        assert [(p.period, p.gross_revenue) for p in monthly] == [("2025-02-01", 10.0), ("2025-03-01", 20.0)]

        daily = await event_store.get_revenue_time_series(datetime(2025, 3, 1), datetime(2025, 3, 8))
        assert [(p.period, p.order_count) for p in daily] == [("2025-03-05", 2)]

    async def test_distinct_sellers(self, event_store, add_order_line):
        at = datetime(2025, 3, 11, 10, 0)
        await add_order_line("o-1", "p-1", 10.0, at=at, seller_id="s-b")
        await add_order_line("o-2", "p-2", 10.0, at=at, seller_id="s-a")
        await add_order_line("o-3", "p-3", 10.0, at=at)

        assert await event_store.get_distinct_sellers_with_revenue(DAY_START, DAY_END) == ["s-a", "s-b"]


class TestCoOccurrence:
    """Co-views and co-purchases"""

    async def test_frequently_bought_together(self, event_store, add_order_line):
        for order_id, products in {
            "o-1": ["a", "b"],
            "o-2": ["a", "b"],
            "o-3": ["a", "d"],
            "o-4": ["a", "c"],
            "o-5": ["b", "c"],
        }.items():
            for product_id in products:
                await add_order_line(order_id, product_id, 5.0)

        rows = await event_store.get_frequently_bought_together("a", limit=10)
        assert [(r.product_id, r.co_purchase_count) for r in rows] == [("b", 2), ("c", 1), ("d", 1)]

    async def test_co_views(self, event_store):
        for session_id, products in {
            "s-1": ["a", "b", "b"],
            "s-2": ["a", "c"],
            "s-3": ["b", "c"],
        }.items():
            for product_id in products:
                await event_store.track_view(product_id, session_id)

        rows = await event_store.get_product_co_views("a", limit=10)
        assert [(r.product_id, r.co_view_count) for r in rows] == [("b", 2), ("c", 1)]

    async def test_no_co_occurrence(self, event_store):
        assert await event_store.get_product_co_views("missing", limit=5) == []
        assert await event_store.get_frequently_bought_together("missing", limit=5) == []


class TestTopProducts:
    """Catalog products ranked over a window"""

    @pytest.fixture
    async def seeded(self, event_store, add_product, add_views, add_order_line):
        at = datetime(2025, 3, 11, 10, 0)
        for product_id in ("p-1", "p-2", "p-3", "p-idle"):
            await add_product(product_id)
        await add_views("p-1", count=10, at=at)
        await add_views("p-2", count=4, at=at)
        await add_views("p-3", count=2, at=at)
        for product_id in ("p-1", "p-2"):
            await event_store.track_conversion(
                ConversionEventType.CHECKOUT_COMPLETED, "s-1", product_id, occurred_at=at
            )
        await add_order_line("o-1", "p-3", 99.0, at=at)
        await add_order_line("o-2", "p-1", 10.0, at=at)

    async def test_by_views(self, event_store, seeded):
        top = await event_store.get_top_products(DAY_START, DAY_END, limit=10, order_by="views")
        assert [p.product_id for p in top] == ["p-1", "p-2", "p-3"]

    async def test_by_revenue(self, event_store, seeded):
        top = await event_store.get_top_products(DAY_START, DAY_END, limit=2, order_by="revenue")
        assert [(p.product_id, p.revenue) for p in top] == [("p-3", 99.0), ("p-1", 10.0)]

    async def test_by_conversion(self, event_store, seeded):
        top = await event_store.get_top_products(DAY_START, DAY_END, limit=10, order_by="conversion")
        assert [(p.product_id, p.conversion_rate) for p in top] == [
            ("p-2", 25.0),
            ("p-1", 10.0),
            ("p-3", 0.0),
        ]
