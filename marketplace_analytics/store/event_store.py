"""
Event Store

Read queries over the append-only fact tables (views, conversion events,
revenue records) plus the write helpers used by event producers.

Every query opens its own short-lived session from the injected factory, so
callers may issue independent reads concurrently with ``asyncio.gather``.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import Select, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_analytics.database.models import (
    FUNNEL_STAGES,
    ConversionEvent,
    ConversionEventType,
    Product,
    ProductView,
    ReportGroupBy,
    RevenueRecord,
)
from marketplace_analytics.schemas import (
    CountryShare,
    DeviceShare,
    FunnelStageCount,
    RevenuePoint,
    RevenueSummary,
    TopProduct,
    TrafficSourceShare,
)
from marketplace_analytics.utils import percentage, round2

logger = structlog.get_logger(__name__)


@dataclass
class CoViewedProduct:
    """Product viewed in the same sessions as a target product"""
    product_id: str
    co_view_count: int


@dataclass
class FrequentlyBoughtProduct:
    """Product purchased in the same orders as a target product"""
    product_id: str
    co_purchase_count: int


@dataclass
class ProductViewCount:
    """View velocity of a product over a window"""
    product_id: str
    view_count: int


@dataclass
class ProductSalesCount:
    """Completed checkouts of a product over a window"""
    product_id: str
    sales_count: int


def _as_date(value: Any) -> date:
    # func.date() yields a date on PostgreSQL and an ISO string on SQLite
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _as_float(value: Any) -> float:
    if value is None:
        return 0.0
    return float(value)


def bucket_start(day: date, group_by: ReportGroupBy) -> date:
    """First day of the bucket containing ``day`` (ISO weeks start on Monday)."""
    if group_by == ReportGroupBy.WEEK:
        return day - timedelta(days=day.weekday())
    if group_by == ReportGroupBy.MONTH:
        return day.replace(day=1)
    return day


class EventStore:
    """
    Typed queries against the marketplace event tables.

    Example:
        store = EventStore(session_factory)
        views = await store.count_views(start, end, product_id="p-1")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # -------------------------------------------------------------------------
    # Execution helpers
    # -------------------------------------------------------------------------

    async def _scalar(self, stmt: Select) -> Any:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar()

    async def _rows(self, stmt: Select) -> Sequence[Any]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.all()

    async def _add(self, entity: Any) -> Any:
        async with self._session_factory() as session:
            session.add(entity)
            await session.commit()
        return entity

    # -------------------------------------------------------------------------
    # Tracking writes
    # -------------------------------------------------------------------------

    async def track_view(self, product_id: str, session_id: str, **attributes: Any) -> ProductView:
        """Append a product view. ``attributes`` are ProductView columns."""
        return await self._add(
            ProductView(product_id=product_id, session_id=session_id, **attributes)
        )

    async def track_conversion(
        self,
        event_type: ConversionEventType,
        session_id: str,
        product_id: Optional[str] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> ConversionEvent:
        """Append a funnel event."""
        event = ConversionEvent(
            event_type=event_type,
            session_id=session_id,
            product_id=product_id,
            user_id=user_id,
            event_metadata=metadata,
        )
        if occurred_at is not None:
            event.occurred_at = occurred_at
        return await self._add(event)

    async def record_revenue(
        self,
        order_id: str,
        product_id: str,
        gross_amount: float,
        platform_fee: float,
        seller_amount: float,
        net_revenue: float,
        period: date,
        seller_id: Optional[str] = None,
        coupon_discount: float = 0.0,
        currency: str = "USD",
        recorded_at: Optional[datetime] = None,
    ) -> RevenueRecord:
        """Append a revenue record for one order line."""
        record = RevenueRecord(
            order_id=order_id,
            product_id=product_id,
            seller_id=seller_id,
            gross_amount=gross_amount,
            platform_fee=platform_fee,
            seller_amount=seller_amount,
            coupon_discount=coupon_discount,
            net_revenue=net_revenue,
            currency=currency,
            period=period,
        )
        if recorded_at is not None:
            record.recorded_at = recorded_at
        return await self._add(record)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @staticmethod
    def _view_window(start: datetime, end: datetime, product_id: Optional[str]) -> list:
        conditions = [ProductView.viewed_at >= start, ProductView.viewed_at < end]
        if product_id:
            conditions.append(ProductView.product_id == product_id)
        return conditions

    async def count_views(
        self, start: datetime, end: datetime, product_id: Optional[str] = None
    ) -> int:
        stmt = select(func.count(ProductView.id)).where(*self._view_window(start, end, product_id))
        return int(await self._scalar(stmt) or 0)

    async def count_unique_visitors(
        self, start: datetime, end: datetime, product_id: Optional[str] = None
    ) -> int:
        """Distinct visitors, a visitor being the user id or else the session id."""
        visitor = func.coalesce(ProductView.user_id, ProductView.session_id)
        stmt = select(func.count(func.distinct(visitor))).where(
            *self._view_window(start, end, product_id)
        )
        return int(await self._scalar(stmt) or 0)

    async def get_daily_view_counts(self, start: datetime, end: datetime) -> Dict[date, int]:
        day = func.date(ProductView.viewed_at).label("day")
        stmt = (
            select(day, func.count(ProductView.id))
            .where(*self._view_window(start, end, None))
            .group_by(day)
            .order_by(day)
        )
        return {_as_date(row[0]): int(row[1]) for row in await self._rows(stmt)}

    async def get_distinct_products_with_views(self, start: datetime, end: datetime) -> List[str]:
        stmt = (
            select(ProductView.product_id)
            .where(*self._view_window(start, end, None))
            .distinct()
            .order_by(ProductView.product_id)
        )
        return [row[0] for row in await self._rows(stmt)]

    async def get_product_view_velocity(
        self, start: datetime, end: datetime, limit: int
    ) -> List[ProductViewCount]:
        """Products ranked by raw view count over the window."""
        view_count = func.count(ProductView.id).label("view_count")
        stmt = (
            select(ProductView.product_id, view_count)
            .where(*self._view_window(start, end, None))
            .group_by(ProductView.product_id)
            .order_by(view_count.desc(), ProductView.product_id)
            .limit(limit)
        )
        return [ProductViewCount(product_id=r[0], view_count=int(r[1])) for r in await self._rows(stmt)]

    async def get_user_recently_viewed_products(self, user_id: str, limit: int) -> List[str]:
        last_viewed = func.max(ProductView.viewed_at).label("last_viewed")
        stmt = (
            select(ProductView.product_id, last_viewed)
            .where(ProductView.user_id == user_id)
            .group_by(ProductView.product_id)
            .order_by(last_viewed.desc(), ProductView.product_id)
            .limit(limit)
        )
        return [row[0] for row in await self._rows(stmt)]

    # -------------------------------------------------------------------------
    # Breakdowns
    # -------------------------------------------------------------------------

    async def _grouped_view_counts(
        self, column: Any, start: datetime, end: datetime, product_id: Optional[str]
    ) -> List[tuple]:
        stmt = (
            select(column, func.count(ProductView.id))
            .where(*self._view_window(start, end, product_id))
            .group_by(column)
        )
        counts: Dict[str, int] = {}
        for value, count in await self._rows(stmt):
            if value is None:
                key = "unknown"
            else:
                key = getattr(value, "value", value)
            counts[key] = counts.get(key, 0) + int(count)
        total = sum(counts.values())
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [(key, count, percentage(count, total)) for key, count in ranked]

    async def get_traffic_source_breakdown(
        self, start: datetime, end: datetime, product_id: Optional[str] = None
    ) -> List[TrafficSourceShare]:
        rows = await self._grouped_view_counts(ProductView.source, start, end, product_id)
        return [TrafficSourceShare(source=k, count=c, percentage=p) for k, c, p in rows]

    async def get_device_breakdown(
        self, start: datetime, end: datetime, product_id: Optional[str] = None
    ) -> List[DeviceShare]:
        rows = await self._grouped_view_counts(ProductView.device_type, start, end, product_id)
        return [DeviceShare(device_type=k, count=c, percentage=p) for k, c, p in rows]

    async def get_geographic_breakdown(
        self, start: datetime, end: datetime, product_id: Optional[str] = None
    ) -> List[CountryShare]:
        rows = await self._grouped_view_counts(ProductView.country, start, end, product_id)
        return [CountryShare(country=k, count=c, percentage=p) for k, c, p in rows]

    # -------------------------------------------------------------------------
    # Conversion funnel
    # -------------------------------------------------------------------------

    async def get_conversion_funnel(
        self, start: datetime, end: datetime, product_id: Optional[str] = None
    ) -> List[FunnelStageCount]:
        """Event counts for the five funnel stages in order, zero-filled."""
        conditions = [ConversionEvent.occurred_at >= start, ConversionEvent.occurred_at < end]
        if product_id:
            conditions.append(ConversionEvent.product_id == product_id)
        stmt = (
            select(ConversionEvent.event_type, func.count(ConversionEvent.id))
            .where(*conditions)
            .group_by(ConversionEvent.event_type)
        )
        counts = {row[0]: int(row[1]) for row in await self._rows(stmt)}
        return [FunnelStageCount(stage=stage, count=counts.get(stage, 0)) for stage in FUNNEL_STAGES]

    async def count_conversions(
        self,
        start: datetime,
        end: datetime,
        event_type: ConversionEventType,
        product_id: Optional[str] = None,
    ) -> int:
        conditions = [
            ConversionEvent.occurred_at >= start,
            ConversionEvent.occurred_at < end,
            ConversionEvent.event_type == event_type,
        ]
        if product_id:
            conditions.append(ConversionEvent.product_id == product_id)
        stmt = select(func.count(ConversionEvent.id)).where(*conditions)
        return int(await self._scalar(stmt) or 0)

    async def get_user_purchased_products(self, user_id: str) -> List[str]:
        """Products the user bought, most recent purchase first."""
        last_purchase = func.max(ConversionEvent.occurred_at).label("last_purchase")
        stmt = (
            select(ConversionEvent.product_id, last_purchase)
            .where(
                ConversionEvent.user_id == user_id,
                ConversionEvent.event_type == ConversionEventType.CHECKOUT_COMPLETED,
                ConversionEvent.product_id.is_not(None),
            )
            .group_by(ConversionEvent.product_id)
            .order_by(last_purchase.desc(), ConversionEvent.product_id)
        )
        return [row[0] for row in await self._rows(stmt)]

    async def get_product_sales_in_category(
        self, category_id: str, start: datetime, end: datetime, limit: int
    ) -> List[ProductSalesCount]:
        """Products of a category ranked by completed checkouts."""
        sales_count = func.count(ConversionEvent.id).label("sales_count")
        stmt = (
            select(ConversionEvent.product_id, sales_count)
            .join(Product, Product.id == ConversionEvent.product_id)
            .where(
                Product.category_id == category_id,
                ConversionEvent.event_type == ConversionEventType.CHECKOUT_COMPLETED,
                ConversionEvent.occurred_at >= start,
                ConversionEvent.occurred_at < end,
            )
            .group_by(ConversionEvent.product_id)
            .order_by(sales_count.desc(), ConversionEvent.product_id)
            .limit(limit)
        )
        return [ProductSalesCount(product_id=r[0], sales_count=int(r[1])) for r in await self._rows(stmt)]

    # -------------------------------------------------------------------------
    # Revenue
    # -------------------------------------------------------------------------

    @staticmethod
    def _revenue_window(
        start: datetime,
        end: datetime,
        seller_id: Optional[str],
        product_id: Optional[str],
    ) -> list:
        conditions = [RevenueRecord.recorded_at >= start, RevenueRecord.recorded_at < end]
        if seller_id:
            conditions.append(RevenueRecord.seller_id == seller_id)
        if product_id:
            conditions.append(RevenueRecord.product_id == product_id)
        return conditions

    async def get_revenue_summary(
        self,
        start: datetime,
        end: datetime,
        seller_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> RevenueSummary:
        """Gross, net, fees and distinct order count, optionally per seller or product."""
        stmt = select(
            func.sum(RevenueRecord.gross_amount),
            func.sum(RevenueRecord.net_revenue),
            func.sum(RevenueRecord.platform_fee),
            func.count(func.distinct(RevenueRecord.order_id)),
        ).where(*self._revenue_window(start, end, seller_id, product_id))
        rows = await self._rows(stmt)
        gross, net, fees, orders = rows[0] if rows else (None, None, None, 0)
        return RevenueSummary(
            gross_revenue=_as_float(gross),
            net_revenue=_as_float(net),
            platform_fees=_as_float(fees),
            order_count=int(orders or 0),
        )

    async def get_revenue_time_series(
        self,
        start: datetime,
        end: datetime,
        group_by: ReportGroupBy = ReportGroupBy.DAY,
        seller_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> List[RevenuePoint]:
        """
        Revenue per day, ISO week or month, ascending.

        Rows are grouped per day in the database and rolled up to weeks or
        months here; a bucket's order count is the sum of its daily distinct
        order counts.
        """
        day = func.date(RevenueRecord.recorded_at).label("day")
        stmt = (
            select(
                day,
                func.sum(RevenueRecord.gross_amount),
                func.sum(RevenueRecord.net_revenue),
                func.sum(RevenueRecord.platform_fee),
                func.count(func.distinct(RevenueRecord.order_id)),
            )
            .where(*self._revenue_window(start, end, seller_id, product_id))
            .group_by(day)
            .order_by(day)
        )

        buckets: "OrderedDict[date, List[float]]" = OrderedDict()
        for raw_day, gross, net, fees, orders in await self._rows(stmt):
            key = bucket_start(_as_date(raw_day), group_by)
            totals = buckets.setdefault(key, [0.0, 0.0, 0.0, 0])
            totals[0] += _as_float(gross)
            totals[1] += _as_float(net)
            totals[2] += _as_float(fees)
            totals[3] += int(orders or 0)

        return [
            RevenuePoint(
                period=key.isoformat(),
                gross_revenue=round2(gross),
                net_revenue=round2(net),
                platform_fees=round2(fees),
                order_count=int(orders),
            )
            for key, (gross, net, fees, orders) in sorted(buckets.items())
        ]

    async def get_distinct_sellers_with_revenue(self, start: datetime, end: datetime) -> List[str]:
        stmt = (
            select(RevenueRecord.seller_id)
            .where(*self._revenue_window(start, end, None, None), RevenueRecord.seller_id.is_not(None))
            .distinct()
            .order_by(RevenueRecord.seller_id)
        )
        return [row[0] for row in await self._rows(stmt)]

    # -------------------------------------------------------------------------
    # Co-occurrence
    # -------------------------------------------------------------------------

    async def get_product_co_views(self, product_id: str, limit: int) -> List[CoViewedProduct]:
        """Sessions that viewed the product, and what else those sessions viewed."""
        target_sessions = select(ProductView.session_id).where(ProductView.product_id == product_id)
        co_view_count = func.count(ProductView.id).label("co_view_count")
        stmt = (
            select(ProductView.product_id, co_view_count)
            .where(
                ProductView.session_id.in_(target_sessions),
                ProductView.product_id != product_id,
            )
            .group_by(ProductView.product_id)
            .order_by(co_view_count.desc(), ProductView.product_id)
            .limit(limit)
        )
        return [CoViewedProduct(product_id=r[0], co_view_count=int(r[1])) for r in await self._rows(stmt)]

    async def get_frequently_bought_together(
        self, product_id: str, limit: int
    ) -> List[FrequentlyBoughtProduct]:
        """Orders containing the product, and what else those orders contained."""
        target_orders = select(RevenueRecord.order_id).where(RevenueRecord.product_id == product_id)
        co_purchase_count = func.count(func.distinct(RevenueRecord.order_id)).label("co_purchase_count")
        stmt = (
            select(RevenueRecord.product_id, co_purchase_count)
            .where(
                RevenueRecord.order_id.in_(target_orders),
                RevenueRecord.product_id != product_id,
            )
            .group_by(RevenueRecord.product_id)
            .order_by(co_purchase_count.desc(), RevenueRecord.product_id)
            .limit(limit)
        )
        return [
            FrequentlyBoughtProduct(product_id=r[0], co_purchase_count=int(r[1]))
            for r in await self._rows(stmt)
        ]

    # -------------------------------------------------------------------------
    # Top products
    # -------------------------------------------------------------------------

    async def get_top_products(
        self, start: datetime, end: datetime, limit: int, order_by: str = "views"
    ) -> List[TopProduct]:
        """Catalog products with activity in the window, ranked by views, revenue or conversion."""
        views_sq = (
            select(ProductView.product_id.label("product_id"), func.count(ProductView.id).label("view_count"))
            .where(*self._view_window(start, end, None))
            .group_by(ProductView.product_id)
            .subquery()
        )
        conversions_sq = (
            select(
                ConversionEvent.product_id.label("product_id"),
                func.count(ConversionEvent.id).label("conversion_count"),
            )
            .where(
                ConversionEvent.occurred_at >= start,
                ConversionEvent.occurred_at < end,
                ConversionEvent.event_type == ConversionEventType.CHECKOUT_COMPLETED,
            )
            .group_by(ConversionEvent.product_id)
            .subquery()
        )
        revenue_sq = (
            select(
                RevenueRecord.product_id.label("product_id"),
                func.sum(RevenueRecord.gross_amount).label("total_revenue"),
            )
            .where(*self._revenue_window(start, end, None, None))
            .group_by(RevenueRecord.product_id)
            .subquery()
        )

        views = func.coalesce(views_sq.c.view_count, 0)
        conversions = func.coalesce(conversions_sq.c.conversion_count, 0)
        revenue = func.coalesce(revenue_sq.c.total_revenue, 0)
        conversion_ratio = case((views > 0, conversions * 1.0 / views), else_=0.0)

        ordering = {
            "revenue": revenue.desc(),
            "conversion": conversion_ratio.desc(),
        }.get(order_by, views.desc())

        stmt = (
            select(Product.id, Product.title, views, conversions, revenue)
            .select_from(Product)
            .outerjoin(views_sq, views_sq.c.product_id == Product.id)
            .outerjoin(conversions_sq, conversions_sq.c.product_id == Product.id)
            .outerjoin(revenue_sq, revenue_sq.c.product_id == Product.id)
            .where(or_(views > 0, conversions > 0, revenue > 0))
            .order_by(ordering, Product.id)
            .limit(limit)
        )

        return [
            TopProduct(
                product_id=pid,
                title=title,
                views=int(v),
                conversions=int(c),
                revenue=round2(_as_float(r)),
                conversion_rate=percentage(int(c), int(v)),
            )
            for pid, title, v, c, r in await self._rows(stmt)
        ]
