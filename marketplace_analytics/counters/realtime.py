"""
Real-time Counters

Best-effort daily counters (views per product, sales, revenue) and the
active-viewer sliding window. Keys are scoped to the UTC calendar day:

    analytics:views:{product_id}:{YYYY-MM-DD}
    analytics:today:sales:{YYYY-MM-DD}
    analytics:today:revenue:{YYYY-MM-DD}
    analytics:active_viewers:{product_id}   (sorted set, score = epoch ms)

Counters fail open: when the store is unavailable a warning is logged,
increments return None and reads return zero. Callers never see the error.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from marketplace_analytics.config.settings import CounterSettings
from marketplace_analytics.counters.store import CounterStore
from marketplace_analytics.errors import CounterStoreUnavailable
from marketplace_analytics.utils import utcnow

logger = structlog.get_logger(__name__)

_EPOCH = datetime(1970, 1, 1)


@dataclass
class TodayStats:
    sales_count: int
    revenue: float


def _epoch_ms(moment: datetime) -> int:
    return int((moment - _EPOCH).total_seconds() * 1000)


class RealtimeCounters:
    """
    Real-time counters over an injected CounterStore.

    Example:
        counters = RealtimeCounters(RedisCounterStore(get_redis()))
        await counters.increment_product_view_count("p-1")
    """

    def __init__(
        self,
        store: CounterStore,
        settings: Optional[CounterSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._settings = settings or CounterSettings()
        self._clock = clock

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def _today_key(self, name: str) -> str:
        return f"{self._settings.key_prefix}:{name}:{self._clock().date().isoformat()}"

    def view_count_key(self, product_id: str) -> str:
        return self._today_key(f"views:{product_id}")

    def sales_count_key(self) -> str:
        return self._today_key("today:sales")

    def revenue_key(self) -> str:
        return self._today_key("today:revenue")

    def active_viewers_key(self, product_id: str) -> str:
        return f"{self._settings.key_prefix}:active_viewers:{product_id}"

    # -------------------------------------------------------------------------
    # Increments
    # -------------------------------------------------------------------------

    async def _increment_daily(self, key: str) -> Optional[int]:
        try:
            count = await self._store.increment(key)
            # only the first increment of the day sets the expiry
            if count == 1:
                await self._store.expire(key, self._settings.daily_key_ttl_seconds)
            return count
        except CounterStoreUnavailable as e:
            logger.warning("Counter increment skipped", key=key, operation=e.operation, error=str(e.cause))
            return None

    async def increment_product_view_count(self, product_id: str) -> Optional[int]:
        return await self._increment_daily(self.view_count_key(product_id))

    async def increment_today_sales_count(self) -> Optional[int]:
        return await self._increment_daily(self.sales_count_key())

    async def increment_today_revenue(self, amount: float) -> Optional[float]:
        key = self.revenue_key()
        try:
            total = await self._store.increment_float(key, amount)
            if await self._store.ttl(key) < 0:
                await self._store.expire(key, self._settings.daily_key_ttl_seconds)
            return total
        except CounterStoreUnavailable as e:
            logger.warning("Revenue counter skipped", key=key, amount=amount, error=str(e.cause))
            return None

    # -------------------------------------------------------------------------
    # Active viewers
    # -------------------------------------------------------------------------

    async def track_active_viewer(self, product_id: str, session_id: str) -> None:
        """Record a session as viewing now and evict sessions older than the window."""
        key = self.active_viewers_key(product_id)
        window = self._settings.active_viewer_window_seconds
        now_ms = _epoch_ms(self._clock())
        try:
            await self._store.sorted_set_add(key, now_ms, session_id)
            await self._store.sorted_set_evict_before(key, now_ms - window * 1000)
            await self._store.expire(key, window * 2)
        except CounterStoreUnavailable as e:
            logger.warning("Active viewer not tracked", key=key, error=str(e.cause))

    async def get_active_viewers(self, product_id: str) -> int:
        key = self.active_viewers_key(product_id)
        now_ms = _epoch_ms(self._clock())
        cutoff = now_ms - self._settings.active_viewer_window_seconds * 1000
        try:
            return await self._store.sorted_set_count_in_range(key, cutoff, float("inf"))
        except CounterStoreUnavailable as e:
            logger.warning("Active viewer count unavailable", key=key, error=str(e.cause))
            return 0

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_today_stats(self) -> TodayStats:
        try:
            sales = await self._store.get(self.sales_count_key())
            revenue = await self._store.get(self.revenue_key())
        except CounterStoreUnavailable as e:
            logger.warning("Today stats unavailable", error=str(e.cause))
            return TodayStats(sales_count=0, revenue=0.0)
        return TodayStats(
            sales_count=int(sales) if sales else 0,
            revenue=float(revenue) if revenue else 0.0,
        )
