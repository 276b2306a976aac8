"""
Result Schemas

Pydantic models returned by the aggregation, scoring, recommendation and
reporting operations. Snapshot metrics are a union tagged by ``scope``.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from marketplace_analytics.database.models import AnalyticsScope, ConversionEventType


# =============================================================================
# BREAKDOWNS
# =============================================================================

class TrafficSourceShare(BaseModel):
    """Views from one traffic source"""
    source: str
    count: int
    percentage: float


class DeviceShare(BaseModel):
    """Views from one device class"""
    device_type: str
    count: int
    percentage: float


class CountryShare(BaseModel):
    """Views from one country"""
    country: str
    count: int
    percentage: float


class FunnelStageCount(BaseModel):
    """Raw event count for one funnel stage"""
    stage: ConversionEventType
    count: int


class RevenueSummary(BaseModel):
    """Revenue totals over a window"""
    gross_revenue: float = 0.0
    net_revenue: float = 0.0
    platform_fees: float = 0.0
    order_count: int = 0


class RevenuePoint(BaseModel):
    """Revenue for one time bucket"""
    period: str
    gross_revenue: float
    net_revenue: float
    platform_fees: float
    order_count: int


class TopProduct(BaseModel):
    """Product ranked by views, revenue or conversion"""
    product_id: str
    title: str
    views: int
    conversions: int
    revenue: float
    conversion_rate: float


# =============================================================================
# SNAPSHOT METRICS
# =============================================================================

class PlatformMetrics(BaseModel):
    """Platform-wide metrics for one period"""
    scope: Literal["platform"] = "platform"
    total_views: int
    unique_visitors: int
    purchase_count: int
    gross_revenue: float
    net_revenue: float
    platform_fees: float
    order_count: int
    average_order_value: float
    conversion_rate: float
    traffic_sources: List[TrafficSourceShare] = Field(default_factory=list)
    device_breakdown: List[DeviceShare] = Field(default_factory=list)
    top_countries: List[CountryShare] = Field(default_factory=list)
    funnel: List[FunnelStageCount] = Field(default_factory=list)


class SellerMetrics(BaseModel):
    """Seller revenue for one period"""
    scope: Literal["seller"] = "seller"
    gross_revenue: float
    net_revenue: float
    platform_fees: float
    order_count: int
    average_order_value: float


class ProductMetrics(BaseModel):
    """Product traffic, funnel and revenue for one period"""
    scope: Literal["product"] = "product"
    views: int
    unique_visitors: int
    add_to_cart_count: int
    purchase_count: int
    gross_revenue: float
    net_revenue: float
    order_count: int
    conversion_rate: float
    cart_rate: float


SnapshotMetrics = Annotated[
    Union[PlatformMetrics, SellerMetrics, ProductMetrics],
    Field(discriminator="scope"),
]

snapshot_metrics_adapter: TypeAdapter = TypeAdapter(SnapshotMetrics)


class Snapshot(BaseModel):
    """A stored snapshot with typed metrics"""
    period: date
    scope: AnalyticsScope
    scope_id: Optional[str] = None
    metrics: SnapshotMetrics
    updated_at: Optional[datetime] = None


# =============================================================================
# SCORING
# =============================================================================

class ScoreBreakdown(BaseModel):
    """Weighted components of the performance score"""
    view_score: int = Field(ge=0, le=100)
    conversion_score: int = Field(ge=0, le=100)
    rating_score: int = Field(ge=0, le=100)
    revenue_trend_score: int = Field(ge=0, le=100)


class PerformanceScore(BaseModel):
    """Composite 0-100 product score"""
    score: int = Field(ge=0, le=100)
    breakdown: ScoreBreakdown


# =============================================================================
# RECOMMENDATIONS
# =============================================================================

class ProductBadge(str, Enum):
    """Qualitative product labels, in display order"""
    NEW = "new"
    TRENDING = "trending"
    BESTSELLER = "bestseller"
    HOT = "hot"


class RecommendedProduct(BaseModel):
    """Catalog details of a recommended product"""
    id: str
    title: str
    slug: str
    price: float
    featured_image: Optional[str] = None
    average_rating: float
    total_reviews: int


# =============================================================================
# REPORTS
# =============================================================================

class DateRange(BaseModel):
    """Half-open reporting window [start, end)"""
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class RevenueTotals(RevenueSummary):
    """Revenue totals with derived average order value"""
    average_order_value: float = 0.0


class RevenueReport(BaseModel):
    time_series: List[RevenuePoint]
    totals: RevenueTotals


class ProductPerformanceReport(BaseModel):
    product_id: str
    total_views: int
    unique_visitors: int
    add_to_cart_count: int
    purchase_count: int
    conversion_rate: float
    cart_rate: float
    gross_revenue: float
    net_revenue: float
    traffic_sources: List[TrafficSourceShare]
    device_breakdown: List[DeviceShare]
    geo_breakdown: List[CountryShare]
    performance_score: int
    performance_breakdown: ScoreBreakdown


class SellerReport(BaseModel):
    seller_id: str
    gross_revenue: float
    net_revenue: float
    platform_fees: float
    order_count: int
    average_order_value: float
    revenue_trend: List[RevenuePoint]


class PlatformReport(BaseModel):
    gmv: float
    platform_revenue: float
    net_revenue: float
    total_orders: int
    average_order_value: float
    total_views: int
    unique_visitors: int
    conversion_rate: float
    active_sellers: int
    active_products: int
    top_products: List[TopProduct]
    revenue_time_series: List[RevenuePoint]


class Sparklines(BaseModel):
    """Daily series over the current overview window"""
    revenue: List[float]
    views: List[int]
    orders: List[int]


class PlatformOverview(BaseModel):
    sales_count: int
    sales_count_change: float
    revenue: float
    revenue_change: float
    views: int
    views_change: float
    conversion_rate: float
    conversion_rate_change: float
    average_order_value: float
    aov_change: float
    sparklines: Sparklines


class FunnelStageReport(BaseModel):
    stage: ConversionEventType
    label: str
    count: int
    rate: float
    dropoff_rate: float


class ConversionFunnelReport(BaseModel):
    stages: List[FunnelStageReport]
    overall_conversion_rate: float
