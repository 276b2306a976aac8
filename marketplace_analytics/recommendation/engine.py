"""
Recommendation Engine

Product lists derived from co-occurrence in sessions and orders, view
velocity and catalog ratings, plus per-user personalization and
qualitative badges. Every result is served cache-aside.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import structlog

from marketplace_analytics.config.settings import RecommendationSettings
from marketplace_analytics.database.models import ConversionEventType
from marketplace_analytics.recommendation.ranking import (
    in_top_percentile,
    merge_weighted,
    rank_by_weight,
)
from marketplace_analytics.schemas import ProductBadge, RecommendedProduct
from marketplace_analytics.serving.cache import CacheManager, make_cache_key
from marketplace_analytics.store.catalog import CatalogReader, to_recommended
from marketplace_analytics.store.event_store import EventStore
from marketplace_analytics.utils import utcnow

logger = structlog.get_logger(__name__)

RECENT_VIEWS_CONSIDERED = 20
SEEDS_EXPANDED = 5
CO_VIEWS_PER_SEED = 10
CO_PURCHASES_PER_SEED = 5
PURCHASE_WEIGHT = 2
TRENDING_PADDING = 10


class RecommendationEngine:
    """
    Ranked product recommendations.

    Example:
        engine = RecommendationEngine(event_store, catalog, CacheManager("recommendations"))
        items = await engine.frequently_bought_together("p-1")
    """

    def __init__(
        self,
        event_store: EventStore,
        catalog: CatalogReader,
        cache: CacheManager,
        settings: Optional[RecommendationSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.event_store = event_store
        self.catalog = catalog
        self.cache = cache
        self.settings = settings or RecommendationSettings()
        self._clock = clock

    def _days_ago(self, now: datetime, days: int) -> datetime:
        return now - timedelta(days=days)

    # -------------------------------------------------------------------------
    # Product lists
    # -------------------------------------------------------------------------

    async def frequently_bought_together(self, product_id: str, limit: int = 4) -> List[RecommendedProduct]:
        """Products sharing the most orders with ``product_id``."""

        async def compute() -> List[RecommendedProduct]:
            rows = await self.event_store.get_frequently_bought_together(product_id, limit)
            return await self.catalog.resolve([row.product_id for row in rows])

        return await self.cache.get_or_set(
            make_cache_key("fbt", product_id, limit),
            compute,
            ttl=self.settings.list_cache_ttl,
            model=List[RecommendedProduct],
        )

    async def customers_also_viewed(self, product_id: str, limit: int = 8) -> List[RecommendedProduct]:
        """Products viewed most often in the sessions that viewed ``product_id``."""

        async def compute() -> List[RecommendedProduct]:
            rows = await self.event_store.get_product_co_views(product_id, limit)
            return await self.catalog.resolve([row.product_id for row in rows])

        return await self.cache.get_or_set(
            make_cache_key("also_viewed", product_id, limit),
            compute,
            ttl=self.settings.list_cache_ttl,
            model=List[RecommendedProduct],
        )

    async def _trending_ids(self, limit: int) -> List[str]:
        now = self._clock()
        rows = await self.event_store.get_product_view_velocity(
            self._days_ago(now, self.settings.trending_window_days), now, limit
        )
        return [row.product_id for row in rows]

    async def trending(self, limit: int = 10) -> List[RecommendedProduct]:
        """Most viewed products over the trailing week."""

        async def compute() -> List[RecommendedProduct]:
            return await self.catalog.resolve(await self._trending_ids(limit))

        return await self.cache.get_or_set(
            make_cache_key("trending", limit),
            compute,
            ttl=self.settings.list_cache_ttl,
            model=List[RecommendedProduct],
        )

    async def top_rated_in_category(self, category_id: str, limit: int = 8) -> List[RecommendedProduct]:
        """Published products of a category by rating, then review count."""

        async def compute() -> List[RecommendedProduct]:
            products = await self.catalog.get_top_rated_in_category(category_id, limit)
            return [to_recommended(product) for product in products]

        return await self.cache.get_or_set(
            make_cache_key("top_rated", category_id, limit),
            compute,
            ttl=self.settings.list_cache_ttl,
            model=List[RecommendedProduct],
        )

    # -------------------------------------------------------------------------
    # Personalization
    # -------------------------------------------------------------------------

    async def personalized(self, user_id: str, limit: int = 8) -> List[RecommendedProduct]:
        """
        Recommendations from the user's own history.

        Candidates come from co-views of the most recently viewed products and,
        weighted double, co-purchases of the most recently purchased ones.
        Products the user already viewed or bought are never recommended.
        Short lists are padded with trending products.
        """

        async def compute() -> List[RecommendedProduct]:
            viewed, purchased = await asyncio.gather(
                self.event_store.get_user_recently_viewed_products(user_id, RECENT_VIEWS_CONSIDERED),
                self.event_store.get_user_purchased_products(user_id),
            )
            excluded = set(viewed) | set(purchased)

            co_views, co_purchases = await asyncio.gather(
                asyncio.gather(*(
                    self.event_store.get_product_co_views(pid, CO_VIEWS_PER_SEED)
                    for pid in viewed[:SEEDS_EXPANDED]
                )),
                asyncio.gather(*(
                    self.event_store.get_frequently_bought_together(pid, CO_PURCHASES_PER_SEED)
                    for pid in purchased[:SEEDS_EXPANDED]
                )),
            )

            weights: dict = {}
            for rows in co_views:
                merge_weighted(weights, ((r.product_id, r.co_view_count) for r in rows), excluded)
            for rows in co_purchases:
                merge_weighted(
                    weights, ((r.product_id, r.co_purchase_count * PURCHASE_WEIGHT) for r in rows), excluded
                )

            selected = rank_by_weight(weights, limit)
            if len(selected) < limit:
                needed = limit - len(selected)
                trending = await self._trending_ids(needed + TRENDING_PADDING)
                padding = [pid for pid in trending if pid not in excluded and pid not in weights]
                selected.extend(padding[:needed])
                logger.debug(
                    "Personalized list padded with trending",
                    user_id=user_id,
                    candidates=len(weights),
                    padded=min(needed, len(padding)),
                )

            return await self.catalog.resolve(selected)

        return await self.cache.get_or_set(
            make_cache_key("personalized", user_id, limit),
            compute,
            ttl=self.settings.personalized_cache_ttl,
            model=List[RecommendedProduct],
        )

    # -------------------------------------------------------------------------
    # Badges
    # -------------------------------------------------------------------------

    async def _velocity_ranking(self, now: datetime) -> List[str]:
        """Trailing-week view ranking shared by every badge lookup."""

        async def compute() -> List[str]:
            rows = await self.event_store.get_product_view_velocity(
                self._days_ago(now, self.settings.trending_window_days),
                now,
                self.settings.badge_sample_size,
            )
            return [row.product_id for row in rows]

        return await self.cache.get_or_set(
            make_cache_key("ranking", "velocity", self.settings.badge_sample_size),
            compute,
            ttl=self.settings.badge_cache_ttl,
            model=List[str],
        )

    async def _category_sales_ranking(self, category_id: str, now: datetime) -> List[str]:
        async def compute() -> List[str]:
            rows = await self.event_store.get_product_sales_in_category(
                category_id,
                self._days_ago(now, self.settings.bestseller_window_days),
                now,
                self.settings.badge_sample_size,
            )
            return [row.product_id for row in rows]

        return await self.cache.get_or_set(
            make_cache_key("ranking", "category_sales", category_id, self.settings.badge_sample_size),
            compute,
            ttl=self.settings.badge_cache_ttl,
            model=List[str],
        )

    async def badges(self, product_id: str) -> List[ProductBadge]:
        """Badges in display order: new, trending, bestseller, hot. Unknown products get none."""

        async def compute() -> List[ProductBadge]:
            product = await self.catalog.get_product(product_id)
            if product is None:
                return []

            now = self._clock()
            fraction = self.settings.percentile_fraction
            week_start = self._days_ago(now, self.settings.trending_window_days)
            badges: List[ProductBadge] = []

            if product.created_at >= self._days_ago(now, self.settings.new_product_days):
                badges.append(ProductBadge.NEW)

            if in_top_percentile(product_id, await self._velocity_ranking(now), fraction):
                badges.append(ProductBadge.TRENDING)

            if product.category_id:
                ranking = await self._category_sales_ranking(product.category_id, now)
                if in_top_percentile(product_id, ranking, fraction):
                    badges.append(ProductBadge.BESTSELLER)

            recent_views = await self.event_store.count_views(week_start, now, product_id)
            if recent_views >= self.settings.hot_min_views:
                purchases = await self.event_store.count_conversions(
                    week_start, now, ConversionEventType.CHECKOUT_COMPLETED, product_id
                )
                if purchases / recent_views >= self.settings.hot_conversion_rate:
                    badges.append(ProductBadge.HOT)

            return badges

        return await self.cache.get_or_set(
            make_cache_key("badges", product_id),
            compute,
            ttl=self.settings.badge_cache_ttl,
            model=List[ProductBadge],
        )
