"""
Database Models - Marketplace Event Store

This module defines the data models read and written by the analytics engine:

Fact Tables (append-only):
- ProductView: product page views with traffic attributes
- ConversionEvent: funnel events (add to cart, checkout, download, ...)
- RevenueRecord: one row per order line with fee split

Aggregates:
- AnalyticsSnapshot: materialized per-period metrics by scope

Catalog read model (owned by the catalog service):
- Product
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marketplace_analytics.utils import utcnow


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# ENUMERATIONS
# =============================================================================

class ConversionEventType(str, Enum):
    """Conversion event types"""
    VIEW = "view"
    ADD_TO_CART = "add_to_cart"
    CHECKOUT_STARTED = "checkout_started"
    CHECKOUT_COMPLETED = "checkout_completed"
    DOWNLOAD = "download"
    REVIEW_WRITTEN = "review_written"
    REFUND_REQUESTED = "refund_requested"


# Ordered funnel stages
FUNNEL_STAGES = (
    ConversionEventType.VIEW,
    ConversionEventType.ADD_TO_CART,
    ConversionEventType.CHECKOUT_STARTED,
    ConversionEventType.CHECKOUT_COMPLETED,
    ConversionEventType.DOWNLOAD,
)


class AnalyticsScope(str, Enum):
    """Snapshot aggregation granularity"""
    PLATFORM = "platform"
    SELLER = "seller"
    PRODUCT = "product"


class TrafficSource(str, Enum):
    """Traffic source of a product view"""
    DIRECT = "direct"
    SEARCH = "search"
    SOCIAL = "social"
    EMAIL = "email"
    REFERRAL = "referral"
    MARKETPLACE = "marketplace"
    ADS = "ads"
    OTHER = "other"


class DeviceType(str, Enum):
    """Device class of a product view"""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


class ProductStatus(str, Enum):
    """Catalog publication status"""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ReportGroupBy(str, Enum):
    """Time bucket of revenue series"""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class AnalyticsPeriod(str, Enum):
    """Trailing windows for overview and funnel reports"""
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"
    NINETY_DAYS = "90d"
    ONE_YEAR = "1y"


# =============================================================================
# CATALOG READ MODEL
# =============================================================================

class Product(Base):
    """
    Product Catalog Table

    Written by the catalog service. The analytics engine only reads titles,
    categories, ratings and creation dates from it.
    """
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    featured_image: Mapped[Optional[str]] = mapped_column(String(500))
    category_id: Mapped[Optional[str]] = mapped_column(String(64))
    seller_id: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[ProductStatus] = mapped_column(
        SQLEnum(ProductStatus), default=ProductStatus.PUBLISHED
    )
    average_rating: Mapped[float] = mapped_column(Float, default=0)
    total_reviews: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_products_category", "category_id"),
        Index("ix_products_status", "status"),
    )


# =============================================================================
# FACT TABLES
# =============================================================================

class ProductView(Base):
    """
    Product View Fact Table

    One row per product page view. Never mutated or deleted.
    """
    __tablename__ = "product_views"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    session_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Traffic
    source: Mapped[TrafficSource] = mapped_column(
        SQLEnum(TrafficSource), default=TrafficSource.DIRECT
    )
    referrer: Mapped[Optional[str]] = mapped_column(String(2000))
    utm_source: Mapped[Optional[str]] = mapped_column(String(100))
    utm_medium: Mapped[Optional[str]] = mapped_column(String(100))
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(100))

    # Device and browser
    device_type: Mapped[Optional[DeviceType]] = mapped_column(SQLEnum(DeviceType))
    browser: Mapped[Optional[str]] = mapped_column(String(50))
    os: Mapped[Optional[str]] = mapped_column(String(50))

    # Geography
    country: Mapped[Optional[str]] = mapped_column(String(100))
    region: Mapped[Optional[str]] = mapped_column(String(100))
    city: Mapped[Optional[str]] = mapped_column(String(100))

    # Engagement
    duration: Mapped[Optional[int]] = mapped_column(Integer)  # seconds
    scroll_depth: Mapped[Optional[int]] = mapped_column(Integer)  # percent

    viewed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_product_views_product_time", "product_id", "viewed_at"),
        Index("ix_product_views_session", "session_id"),
        Index("ix_product_views_user", "user_id"),
        Index("ix_product_views_time", "viewed_at"),
    )


class ConversionEvent(Base):
    """
    Conversion Event Fact Table

    Funnel events. Stage counts are derived per time window, a session may
    contribute to several stages independently.
    """
    __tablename__ = "conversion_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    product_id: Mapped[Optional[str]] = mapped_column(String(64))
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    session_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[ConversionEventType] = mapped_column(
        SQLEnum(ConversionEventType), nullable=False
    )
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_conversion_events_type_time", "event_type", "occurred_at"),
        Index("ix_conversion_events_product", "product_id"),
        Index("ix_conversion_events_user", "user_id"),
    )


class RevenueRecord(Base):
    """
    Revenue Record Fact Table

    Grain: one order line. Records sharing an order_id are the order's items.
    """
    __tablename__ = "revenue_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[Optional[str]] = mapped_column(String(64))
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Measures
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    seller_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    coupon_discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    net_revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    period: Mapped[date] = mapped_column(Date, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_revenue_records_order", "order_id"),
        Index("ix_revenue_records_seller_time", "seller_id", "recorded_at"),
        Index("ix_revenue_records_product_time", "product_id", "recorded_at"),
        Index("ix_revenue_records_time", "recorded_at"),
    )


# =============================================================================
# ANALYTICS AGGREGATES
# =============================================================================

class AnalyticsSnapshot(Base):
    """
    Analytics Snapshot Table

    Materialized metrics for one (period, scope, scope_id). Written only by
    the aggregation engine; a rewrite replaces the metrics in place.
    """
    __tablename__ = "analytics_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    period: Mapped[date] = mapped_column(Date, nullable=False)
    scope: Mapped[AnalyticsScope] = mapped_column(SQLEnum(AnalyticsScope), nullable=False)
    scope_id: Mapped[Optional[str]] = mapped_column(String(64))
    metrics: Mapped[dict] = mapped_column(JSONType, nullable=False)

    # Audit
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("period", "scope", "scope_id", name="uq_analytics_snapshot_key"),
        Index("ix_analytics_snapshots_scope_period", "scope", "period"),
    )
