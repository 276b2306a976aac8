"""
Reporting Service

Read-side reports over the Event Store: revenue, product performance,
seller, platform, platform overview with sparklines, and conversion funnel.
Closed days of the overview sparklines come from platform snapshots when the
daily aggregation has written them.
Each report is cached under a key built from its full parameter set.
"""

import asyncio
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Iterable, List, Mapping, Optional

import structlog

from marketplace_analytics.aggregation.scoring import PerformanceScorer
from marketplace_analytics.config.settings import ReportingSettings
from marketplace_analytics.database.models import (
    AnalyticsPeriod,
    AnalyticsScope,
    ConversionEventType,
    ReportGroupBy,
)
from marketplace_analytics.reporting.csv_export import CsvColumn, export_to_csv
from marketplace_analytics.reporting.periods import (
    build_funnel_report,
    calc_percent_change,
    calendar_days,
    dense_daily_series,
    period_boundaries,
)
from marketplace_analytics.schemas import (
    ConversionFunnelReport,
    DateRange,
    FunnelStageCount,
    PlatformOverview,
    PlatformReport,
    ProductPerformanceReport,
    RevenueReport,
    RevenueTotals,
    SellerReport,
    Sparklines,
)
from marketplace_analytics.serving.cache import CacheManager, make_cache_key
from marketplace_analytics.store.event_store import EventStore
from marketplace_analytics.store.snapshot_store import SnapshotStore
from marketplace_analytics.utils import average, percentage, round2, utcnow

logger = structlog.get_logger(__name__)


def _stage_count(funnel: List[FunnelStageCount], stage: ConversionEventType) -> int:
    return next((s.count for s in funnel if s.stage == stage), 0)


def _whole_days(start: datetime, end: datetime) -> tuple:
    """First and last calendar day lying entirely inside [start, end)."""
    first = start.date() if start.time() == time.min else start.date() + timedelta(days=1)
    last = end.date() - timedelta(days=1)
    return first, last


class ReportingService:
    """
    Report generation with cache-aside.

    Example:
        service = ReportingService(event_store, snapshot_store, scorer, CacheManager("reports"))
        report = await service.platform_overview(AnalyticsPeriod.THIRTY_DAYS)
    """

    def __init__(
        self,
        event_store: EventStore,
        snapshot_store: SnapshotStore,
        scorer: PerformanceScorer,
        cache: CacheManager,
        settings: Optional[ReportingSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.event_store = event_store
        self.snapshot_store = snapshot_store
        self.scorer = scorer
        self.cache = cache
        self.settings = settings or ReportingSettings()
        self._clock = clock

    # -------------------------------------------------------------------------
    # Revenue
    # -------------------------------------------------------------------------

    async def revenue_report(
        self,
        date_range: DateRange,
        group_by: ReportGroupBy = ReportGroupBy.DAY,
        scope: Optional[AnalyticsScope] = None,
        scope_id: Optional[str] = None,
    ) -> RevenueReport:
        """Revenue per bucket plus totals, optionally for one seller or product."""

        async def compute() -> RevenueReport:
            seller_id = scope_id if scope == AnalyticsScope.SELLER else None
            product_id = scope_id if scope == AnalyticsScope.PRODUCT else None

            series = await self.event_store.get_revenue_time_series(
                date_range.start, date_range.end, group_by, seller_id=seller_id, product_id=product_id
            )

            gross = sum(point.gross_revenue for point in series)
            orders = sum(point.order_count for point in series)
            totals = RevenueTotals(
                gross_revenue=round2(gross),
                net_revenue=round2(sum(point.net_revenue for point in series)),
                platform_fees=round2(sum(point.platform_fees for point in series)),
                order_count=orders,
                average_order_value=average(gross, orders),
            )
            return RevenueReport(time_series=series, totals=totals)

        return await self.cache.get_or_set(
            make_cache_key("revenue", date_range.start, date_range.end, group_by, scope or "all", scope_id or "all"),
            compute,
            ttl=self.settings.report_cache_ttl,
            model=RevenueReport,
        )

    # -------------------------------------------------------------------------
    # Product performance
    # -------------------------------------------------------------------------

    async def product_performance_report(self, product_id: str, date_range: DateRange) -> ProductPerformanceReport:
        """Traffic, funnel, revenue and score of one product. Unknown products report zeros."""

        async def compute() -> ProductPerformanceReport:
            start, end = date_range.start, date_range.end
            (
                total_views,
                unique_visitors,
                funnel,
                revenue,
                traffic_sources,
                devices,
                countries,
                performance,
            ) = await asyncio.gather(
                self.event_store.count_views(start, end, product_id),
                self.event_store.count_unique_visitors(start, end, product_id),
                self.event_store.get_conversion_funnel(start, end, product_id),
                self.event_store.get_revenue_summary(start, end, product_id=product_id),
                self.event_store.get_traffic_source_breakdown(start, end, product_id),
                self.event_store.get_device_breakdown(start, end, product_id),
                self.event_store.get_geographic_breakdown(start, end, product_id),
                self.scorer.calculate_performance_score(product_id),
            )

            add_to_cart = _stage_count(funnel, ConversionEventType.ADD_TO_CART)
            purchases = _stage_count(funnel, ConversionEventType.CHECKOUT_COMPLETED)

            return ProductPerformanceReport(
                product_id=product_id,
                total_views=total_views,
                unique_visitors=unique_visitors,
                add_to_cart_count=add_to_cart,
                purchase_count=purchases,
                conversion_rate=percentage(purchases, total_views),
                cart_rate=percentage(add_to_cart, total_views),
                gross_revenue=revenue.gross_revenue,
                net_revenue=revenue.net_revenue,
                traffic_sources=traffic_sources,
                device_breakdown=devices,
                geo_breakdown=countries,
                performance_score=performance.score,
                performance_breakdown=performance.breakdown,
            )

        return await self.cache.get_or_set(
            make_cache_key("product_performance", product_id, date_range.start, date_range.end),
            compute,
            ttl=self.settings.report_cache_ttl,
            model=ProductPerformanceReport,
        )

    # -------------------------------------------------------------------------
    # Seller
    # -------------------------------------------------------------------------

    async def seller_report(self, seller_id: str, date_range: DateRange) -> SellerReport:

        async def compute() -> SellerReport:
            revenue, trend = await asyncio.gather(
                self.event_store.get_revenue_summary(date_range.start, date_range.end, seller_id=seller_id),
                self.event_store.get_revenue_time_series(
                    date_range.start, date_range.end, ReportGroupBy.DAY, seller_id=seller_id
                ),
            )
            return SellerReport(
                seller_id=seller_id,
                gross_revenue=revenue.gross_revenue,
                net_revenue=revenue.net_revenue,
                platform_fees=revenue.platform_fees,
                order_count=revenue.order_count,
                average_order_value=average(revenue.gross_revenue, revenue.order_count),
                revenue_trend=trend,
            )

        return await self.cache.get_or_set(
            make_cache_key("seller", seller_id, date_range.start, date_range.end),
            compute,
            ttl=self.settings.report_cache_ttl,
            model=SellerReport,
        )

    # -------------------------------------------------------------------------
    # Platform
    # -------------------------------------------------------------------------

    async def platform_report(self, date_range: DateRange) -> PlatformReport:
        """GMV, fees, traffic, activity counts and top products by revenue."""

        async def compute() -> PlatformReport:
            start, end = date_range.start, date_range.end
            (
                revenue,
                total_views,
                unique_visitors,
                funnel,
                sellers,
                products,
                top_products,
                series,
            ) = await asyncio.gather(
                self.event_store.get_revenue_summary(start, end),
                self.event_store.count_views(start, end),
                self.event_store.count_unique_visitors(start, end),
                self.event_store.get_conversion_funnel(start, end),
                self.event_store.get_distinct_sellers_with_revenue(start, end),
                self.event_store.get_distinct_products_with_views(start, end),
                self.event_store.get_top_products(start, end, self.settings.top_products_limit, "revenue"),
                self.event_store.get_revenue_time_series(start, end, ReportGroupBy.DAY),
            )

            purchases = _stage_count(funnel, ConversionEventType.CHECKOUT_COMPLETED)

            return PlatformReport(
                gmv=revenue.gross_revenue,
                platform_revenue=revenue.platform_fees,
                net_revenue=revenue.net_revenue,
                total_orders=revenue.order_count,
                average_order_value=average(revenue.gross_revenue, revenue.order_count),
                total_views=total_views,
                unique_visitors=unique_visitors,
                conversion_rate=percentage(purchases, total_views),
                active_sellers=len(sellers),
                active_products=len(products),
                top_products=top_products,
                revenue_time_series=series,
            )

        return await self.cache.get_or_set(
            make_cache_key("platform", date_range.start, date_range.end),
            compute,
            ttl=self.settings.report_cache_ttl,
            model=PlatformReport,
        )

    # -------------------------------------------------------------------------
    # Overview
    # -------------------------------------------------------------------------

    async def platform_overview(self, period: AnalyticsPeriod) -> PlatformOverview:
        """
        Headline figures for a trailing window with the change against the
        window of equal length before it, and daily sparklines.
        """

        async def compute() -> PlatformOverview:
            bounds = period_boundaries(period, self._clock())
            cur_start, cur_end = bounds.current_start, bounds.current_end
            prev_start, prev_end = bounds.previous_start, bounds.previous_end

            (
                current_revenue,
                current_views,
                current_funnel,
                previous_revenue,
                previous_views,
                previous_funnel,
                series,
                daily_views,
                snapshots,
            ) = await asyncio.gather(
                self.event_store.get_revenue_summary(cur_start, cur_end),
                self.event_store.count_views(cur_start, cur_end),
                self.event_store.get_conversion_funnel(cur_start, cur_end),
                self.event_store.get_revenue_summary(prev_start, prev_end),
                self.event_store.count_views(prev_start, prev_end),
                self.event_store.get_conversion_funnel(prev_start, prev_end),
                self.event_store.get_revenue_time_series(cur_start, cur_end, ReportGroupBy.DAY),
                self.event_store.get_daily_view_counts(cur_start, cur_end),
                self.snapshot_store.get_snapshots(AnalyticsScope.PLATFORM, *_whole_days(cur_start, cur_end)),
            )

            current_purchases = _stage_count(current_funnel, ConversionEventType.CHECKOUT_COMPLETED)
            previous_purchases = _stage_count(previous_funnel, ConversionEventType.CHECKOUT_COMPLETED)
            current_rate = percentage(current_purchases, current_views)
            previous_rate = percentage(previous_purchases, previous_views)

            current_aov = (
                current_revenue.gross_revenue / current_revenue.order_count
                if current_revenue.order_count > 0 else 0.0
            )
            previous_aov = (
                previous_revenue.gross_revenue / previous_revenue.order_count
                if previous_revenue.order_count > 0 else 0.0
            )

            days = calendar_days(cur_start, cur_end)
            revenue_by_day = {date.fromisoformat(p.period): p.gross_revenue for p in series}
            orders_by_day = {date.fromisoformat(p.period): p.order_count for p in series}
            views_by_day = dict(daily_views)
            for snapshot in snapshots:
                revenue_by_day[snapshot.period] = snapshot.metrics.gross_revenue
                orders_by_day[snapshot.period] = snapshot.metrics.order_count
                views_by_day[snapshot.period] = snapshot.metrics.total_views

            return PlatformOverview(
                sales_count=current_revenue.order_count,
                sales_count_change=calc_percent_change(previous_revenue.order_count, current_revenue.order_count),
                revenue=round2(current_revenue.gross_revenue),
                revenue_change=calc_percent_change(previous_revenue.gross_revenue, current_revenue.gross_revenue),
                views=current_views,
                views_change=calc_percent_change(previous_views, current_views),
                conversion_rate=current_rate,
                conversion_rate_change=calc_percent_change(previous_rate, current_rate),
                average_order_value=round2(current_aov),
                aov_change=calc_percent_change(previous_aov, current_aov),
                sparklines=Sparklines(
                    revenue=dense_daily_series(days, revenue_by_day, 0.0),
                    views=dense_daily_series(days, views_by_day, 0),
                    orders=dense_daily_series(days, orders_by_day, 0),
                ),
            )

        return await self.cache.get_or_set(
            make_cache_key("overview", period),
            compute,
            ttl=self.settings.overview_cache_ttl,
            model=PlatformOverview,
        )

    # -------------------------------------------------------------------------
    # Funnel
    # -------------------------------------------------------------------------

    async def conversion_funnel(
        self, period: AnalyticsPeriod, product_id: Optional[str] = None
    ) -> ConversionFunnelReport:

        async def compute() -> ConversionFunnelReport:
            bounds = period_boundaries(period, self._clock())
            funnel = await self.event_store.get_conversion_funnel(
                bounds.current_start, bounds.current_end, product_id
            )
            return build_funnel_report(funnel)

        return await self.cache.get_or_set(
            make_cache_key("funnel", period, product_id or "all"),
            compute,
            ttl=self.settings.overview_cache_ttl,
            model=ConversionFunnelReport,
        )

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def export_to_csv(self, rows: Iterable[Mapping[str, Any]], headers: List[CsvColumn]) -> str:
        return export_to_csv(rows, headers)

    async def invalidate(self) -> int:
        """Drop every cached report."""
        return await self.cache.invalidate_all()
