"""
Test Suite Configuration
"""
import fnmatch
from datetime import datetime, timedelta
from typing import AsyncGenerator, Dict, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from marketplace_analytics.config.settings import (
    AggregationSettings,
    RecommendationSettings,
    ReportingSettings,
)
from marketplace_analytics.database.connection import create_session_factory
from marketplace_analytics.database.models import Base, Product, ProductStatus
from marketplace_analytics.serving.cache import CacheManager
from marketplace_analytics.store import CatalogReader, EventStore, SnapshotStore

# Wednesday, so the previous day and week boundaries are unambiguous
FIXED_NOW = datetime(2025, 3, 12, 12, 0, 0)


class FakeRedis:
    """In-memory double covering the redis.asyncio calls made by the cache."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.store[key] = value
        return True

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                deleted += 1
            self.ttls.pop(key, None)
        return deleted

    async def scan_iter(self, match: str = "*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key


@pytest.fixture
def test_settings() -> Dict[str, object]:
    """Settings sections used by the services under test"""
    return {
        # one entity at a time: SQLite serializes writers
        "aggregation": AggregationSettings(max_concurrency=1),
        "recommendations": RecommendationSettings(),
        "reporting": ReportingSettings(),
    }


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so concurrent sessions share one database"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest.fixture
def event_store(session_factory) -> EventStore:
    return EventStore(session_factory)


@pytest.fixture
def snapshot_store(session_factory) -> SnapshotStore:
    return SnapshotStore(session_factory)


@pytest.fixture
def catalog(session_factory) -> CatalogReader:
    return CatalogReader(session_factory)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def recommendations_cache(fake_redis) -> CacheManager:
    return CacheManager("recommendations", default_ttl=3600, client=fake_redis)


@pytest.fixture
def reports_cache(fake_redis) -> CacheManager:
    return CacheManager("reports", default_ttl=600, client=fake_redis)


@pytest.fixture
def add_product(session_factory):
    """Insert a catalog product"""

    async def _add(product_id: str, **fields) -> Product:
        values = {
            "title": f"Product {product_id}",
            "slug": f"product-{product_id}",
            "price": 19.99,
            "status": ProductStatus.PUBLISHED,
            "average_rating": 0.0,
            "total_reviews": 0,
            "created_at": datetime(2024, 1, 1),
        }
        values.update(fields)
        product = Product(id=product_id, **values)
        async with session_factory() as session:
            session.add(product)
            await session.commit()
        return product

    return _add


@pytest.fixture
def add_views(event_store):
    """Append product views, one session per view unless ``session_id`` is given"""

    async def _add(
        product_id: str,
        count: int = 1,
        at: datetime = FIXED_NOW - timedelta(hours=1),
        session_id: Optional[str] = None,
        **attributes,
    ) -> None:
        for i in range(count):
            await event_store.track_view(
                product_id, session_id or f"{product_id}-{at:%Y%m%d%H%M}-{i}", viewed_at=at, **attributes
            )

    return _add


@pytest.fixture
def add_order_line(event_store):
    """Append a revenue record with a 10% platform fee"""

    async def _add(
        order_id: str,
        product_id: str,
        gross: float,
        at: datetime = FIXED_NOW - timedelta(hours=1),
        seller_id: Optional[str] = None,
    ) -> None:
        fee = gross / 10
        await event_store.record_revenue(
            order_id=order_id,
            product_id=product_id,
            seller_id=seller_id,
            gross_amount=gross,
            platform_fee=fee,
            seller_amount=gross - fee,
            net_revenue=fee,
            period=at.date(),
            recorded_at=at,
        )

    return _add
