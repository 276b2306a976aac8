"""
Daily Snapshot Aggregation

Materializes one closed UTC day of events into analytics snapshots:

1. Platform snapshot (aborts the run on failure)
2. One snapshot per seller with revenue in the period
3. One snapshot per product with views in the period

Phases run in order. Inside a phase the reads are issued concurrently and
entities are processed on a bounded pool. A failing seller or product is
logged and recorded in the run result without stopping the batch.
Snapshots are upserted, so re-running a period is safe.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta
from typing import Awaitable, Callable, List, Optional

import structlog
from prometheus_client import Counter, Histogram

from marketplace_analytics.config.settings import AggregationSettings
from marketplace_analytics.database.models import AnalyticsScope, ConversionEventType
from marketplace_analytics.errors import AggregationError, EntityFailure
from marketplace_analytics.schemas import (
    FunnelStageCount,
    PlatformMetrics,
    ProductMetrics,
    SellerMetrics,
    SnapshotMetrics,
)
from marketplace_analytics.store.event_store import EventStore
from marketplace_analytics.store.snapshot_store import SnapshotStore
from marketplace_analytics.utils import average, percentage, utcnow

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

SNAPSHOTS_WRITTEN = Counter(
    "analytics_snapshots_written_total",
    "Snapshots upserted by the daily aggregation",
    ["scope"],
)

ENTITY_FAILURES = Counter(
    "analytics_aggregation_entity_failures_total",
    "Seller or product snapshots that failed",
    ["scope"],
)

AGGREGATION_DURATION = Histogram(
    "analytics_aggregation_duration_seconds",
    "Wall time of a daily aggregation run",
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800],
)


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class AggregationRunResult:
    """Outcome of one daily aggregation run"""
    period: date
    platform_written: bool = False
    sellers_written: int = 0
    products_written: int = 0
    failures: List[EntityFailure] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.platform_written


def _stage_count(funnel: List[FunnelStageCount], stage: ConversionEventType) -> int:
    return next((s.count for s in funnel if s.stage == stage), 0)


def day_bounds(period_date: date) -> tuple:
    start = datetime.combine(period_date, dt_time.min)
    return start, start + timedelta(days=1)


EntityBuilder = Callable[[str, datetime, datetime], Awaitable[SnapshotMetrics]]


class AggregationEngine:
    """
    Writes daily platform, seller and product snapshots.

    Example:
        engine = AggregationEngine(EventStore(factory), SnapshotStore(factory))
        result = await engine.run_for_yesterday()
    """

    def __init__(
        self,
        event_store: EventStore,
        snapshot_store: SnapshotStore,
        settings: Optional[AggregationSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.event_store = event_store
        self.snapshot_store = snapshot_store
        self.settings = settings or AggregationSettings()
        self._clock = clock

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def run_for_yesterday(self) -> AggregationRunResult:
        """Aggregate the previous UTC calendar day."""
        return await self.run_daily_aggregation(self._clock().date() - timedelta(days=1))

    async def run_daily_aggregation(self, period_date: date) -> AggregationRunResult:
        """
        Aggregate ``[period_date 00:00, period_date + 1 day 00:00)``.

        Raises:
            AggregationError: If the platform snapshot or an entity listing fails
        """
        started = time.perf_counter()
        start, end = day_bounds(period_date)
        result = AggregationRunResult(period=period_date)

        logger.info("Starting daily snapshot aggregation", period=period_date.isoformat())

        try:
            platform_metrics = await self.build_platform_metrics(start, end)
            await self.snapshot_store.save_snapshot(
                period_date, AnalyticsScope.PLATFORM, None, platform_metrics
            )
        except Exception as e:
            logger.error(
                "Platform snapshot failed, aborting run",
                period=period_date.isoformat(),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AggregationError(period_date, e) from e

        SNAPSHOTS_WRITTEN.labels(scope=AnalyticsScope.PLATFORM.value).inc()
        result.platform_written = True
        logger.debug(
            "Platform snapshot saved",
            total_views=platform_metrics.total_views,
            gross_revenue=platform_metrics.gross_revenue,
        )

        try:
            seller_ids = await self.event_store.get_distinct_sellers_with_revenue(start, end)
        except Exception as e:
            logger.error("Listing active sellers failed", period=period_date.isoformat(), error=str(e))
            raise AggregationError(period_date, e) from e
        result.sellers_written = await self._aggregate_entities(
            period_date, AnalyticsScope.SELLER, seller_ids, self.build_seller_metrics, start, end, result
        )

        try:
            product_ids = await self.event_store.get_distinct_products_with_views(start, end)
        except Exception as e:
            logger.error("Listing viewed products failed", period=period_date.isoformat(), error=str(e))
            raise AggregationError(period_date, e) from e
        result.products_written = await self._aggregate_entities(
            period_date, AnalyticsScope.PRODUCT, product_ids, self.build_product_metrics, start, end, result
        )

        result.duration_seconds = time.perf_counter() - started
        AGGREGATION_DURATION.observe(result.duration_seconds)

        logger.info(
            "Daily snapshot aggregation completed",
            period=period_date.isoformat(),
            sellers=result.sellers_written,
            products=result.products_written,
            failures=len(result.failures),
            duration_ms=round(result.duration_seconds * 1000, 2),
        )
        return result

    # -------------------------------------------------------------------------
    # Entity phases
    # -------------------------------------------------------------------------

    async def _aggregate_entities(
        self,
        period_date: date,
        scope: AnalyticsScope,
        entity_ids: List[str],
        builder: EntityBuilder,
        start: datetime,
        end: datetime,
        result: AggregationRunResult,
    ) -> int:
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        logger.debug("Aggregating entity snapshots", scope=scope.value, count=len(entity_ids))

        async def aggregate_one(entity_id: str) -> bool:
            async with semaphore:
                try:
                    metrics = await builder(entity_id, start, end)
                    await self.snapshot_store.save_snapshot(period_date, scope, entity_id, metrics)
                except Exception as e:
                    logger.error(
                        "Entity snapshot failed",
                        scope=scope.value,
                        entity_id=entity_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    ENTITY_FAILURES.labels(scope=scope.value).inc()
                    result.failures.append(
                        EntityFailure(
                            scope=scope.value,
                            entity_id=entity_id,
                            error=str(e),
                            error_type=type(e).__name__,
                        )
                    )
                    return False
            SNAPSHOTS_WRITTEN.labels(scope=scope.value).inc()
            return True

        written = await asyncio.gather(*(aggregate_one(entity_id) for entity_id in entity_ids))
        return sum(1 for ok in written if ok)

    # -------------------------------------------------------------------------
    # Metric builders
    # -------------------------------------------------------------------------

    async def build_platform_metrics(self, start: datetime, end: datetime) -> PlatformMetrics:
        (
            total_views,
            unique_visitors,
            funnel,
            revenue,
            traffic_sources,
            devices,
            countries,
        ) = await asyncio.gather(
            self.event_store.count_views(start, end),
            self.event_store.count_unique_visitors(start, end),
            self.event_store.get_conversion_funnel(start, end),
            self.event_store.get_revenue_summary(start, end),
            self.event_store.get_traffic_source_breakdown(start, end),
            self.event_store.get_device_breakdown(start, end),
            self.event_store.get_geographic_breakdown(start, end),
        )

        purchases = _stage_count(funnel, ConversionEventType.CHECKOUT_COMPLETED)

        return PlatformMetrics(
            total_views=total_views,
            unique_visitors=unique_visitors,
            purchase_count=purchases,
            gross_revenue=revenue.gross_revenue,
            net_revenue=revenue.net_revenue,
            platform_fees=revenue.platform_fees,
            order_count=revenue.order_count,
            average_order_value=average(revenue.gross_revenue, revenue.order_count),
            conversion_rate=percentage(purchases, total_views),
            traffic_sources=traffic_sources,
            device_breakdown=devices,
            top_countries=countries[: self.settings.top_countries],
            funnel=funnel,
        )

    async def build_seller_metrics(self, seller_id: str, start: datetime, end: datetime) -> SellerMetrics:
        revenue = await self.event_store.get_revenue_summary(start, end, seller_id=seller_id)
        return SellerMetrics(
            gross_revenue=revenue.gross_revenue,
            net_revenue=revenue.net_revenue,
            platform_fees=revenue.platform_fees,
            order_count=revenue.order_count,
            average_order_value=average(revenue.gross_revenue, revenue.order_count),
        )

    async def build_product_metrics(self, product_id: str, start: datetime, end: datetime) -> ProductMetrics:
        views, unique_visitors, revenue, funnel = await asyncio.gather(
            self.event_store.count_views(start, end, product_id),
            self.event_store.count_unique_visitors(start, end, product_id),
            self.event_store.get_revenue_summary(start, end, product_id=product_id),
            self.event_store.get_conversion_funnel(start, end, product_id),
        )

        purchases = _stage_count(funnel, ConversionEventType.CHECKOUT_COMPLETED)
        add_to_cart = _stage_count(funnel, ConversionEventType.ADD_TO_CART)

        return ProductMetrics(
            views=views,
            unique_visitors=unique_visitors,
            add_to_cart_count=add_to_cart,
            purchase_count=purchases,
            gross_revenue=revenue.gross_revenue,
            net_revenue=revenue.net_revenue,
            order_count=revenue.order_count,
            conversion_rate=percentage(purchases, views),
            cart_rate=percentage(add_to_cart, views),
        )
