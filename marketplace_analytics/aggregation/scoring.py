"""
Product Performance Scoring

Composite 0-100 score from four components:
- views (30%): logarithmic, diminishing returns past ~1000 views
- conversion (30%): purchases / views against a 5% reference rate
- rating (20%): average rating weighted by review-count confidence
- revenue trend (20%): growth of gross revenue vs the previous 30 days
"""

import asyncio
import math
from datetime import datetime, timedelta
from typing import Callable

import structlog

from marketplace_analytics.database.models import ConversionEventType
from marketplace_analytics.schemas import PerformanceScore, ScoreBreakdown
from marketplace_analytics.store.catalog import CatalogReader
from marketplace_analytics.store.event_store import EventStore
from marketplace_analytics.utils import round_half_up, utcnow

logger = structlog.get_logger(__name__)

SCORE_WINDOW_DAYS = 30
REFERENCE_CONVERSION_RATE = 0.05
FULL_CONFIDENCE_REVIEWS = 10

WEIGHTS = {
    "view_score": 0.3,
    "conversion_score": 0.3,
    "rating_score": 0.2,
    "revenue_trend_score": 0.2,
}


def _clamp(value: int) -> int:
    return max(0, min(100, value))


def view_score(views: int) -> int:
    return _clamp(round_half_up(math.log2(views + 1) * 10))


def conversion_score(purchases: int, views: int) -> int:
    if views <= 0:
        return 0
    rate = purchases / views
    return _clamp(round_half_up(rate / REFERENCE_CONVERSION_RATE * 100))


def rating_score(average_rating: float, total_reviews: int) -> int:
    confidence = min(1.0, total_reviews / FULL_CONFIDENCE_REVIEWS)
    return _clamp(round_half_up(average_rating / 5 * 100 * confidence))


def revenue_trend_score(current_revenue: float, previous_revenue: float) -> int:
    if previous_revenue == 0:
        return 100 if current_revenue > 0 else 0
    growth = (current_revenue - previous_revenue) / previous_revenue
    return _clamp(round_half_up(50 + growth * 50))


def compose_score(breakdown: ScoreBreakdown) -> PerformanceScore:
    total = sum(getattr(breakdown, name) * weight for name, weight in WEIGHTS.items())
    return PerformanceScore(score=_clamp(round_half_up(total)), breakdown=breakdown)


ZERO_SCORE = PerformanceScore(
    score=0,
    breakdown=ScoreBreakdown(view_score=0, conversion_score=0, rating_score=0, revenue_trend_score=0),
)


class PerformanceScorer:
    """Gathers the inputs of a product score from the Event Store and catalog."""

    def __init__(
        self,
        event_store: EventStore,
        catalog: CatalogReader,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.event_store = event_store
        self.catalog = catalog
        self._clock = clock

    async def calculate_performance_score(self, product_id: str) -> PerformanceScore:
        """
        Score a product over the trailing 30 days.

        Unknown products score zero on every component.
        """
        product = await self.catalog.get_product(product_id)
        if product is None:
            logger.info("Scoring unknown product", product_id=product_id)
            return ZERO_SCORE

        now = self._clock()
        current_start = now - timedelta(days=SCORE_WINDOW_DAYS)
        previous_start = now - timedelta(days=2 * SCORE_WINDOW_DAYS)

        views, purchases, current_revenue, previous_revenue = await asyncio.gather(
            self.event_store.count_views(current_start, now, product_id),
            self.event_store.count_conversions(
                current_start, now, ConversionEventType.CHECKOUT_COMPLETED, product_id
            ),
            self.event_store.get_revenue_summary(current_start, now, product_id=product_id),
            self.event_store.get_revenue_summary(previous_start, current_start, product_id=product_id),
        )

        breakdown = ScoreBreakdown(
            view_score=view_score(views),
            conversion_score=conversion_score(purchases, views),
            rating_score=rating_score(float(product.average_rating or 0), int(product.total_reviews or 0)),
            revenue_trend_score=revenue_trend_score(
                current_revenue.gross_revenue, previous_revenue.gross_revenue
            ),
        )
        return compose_score(breakdown)
