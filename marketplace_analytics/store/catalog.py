"""
Catalog Reader

Read-only access to the product catalog owned by the catalog service.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_analytics.database.models import Product, ProductStatus
from marketplace_analytics.errors import EntityNotFoundError
from marketplace_analytics.schemas import RecommendedProduct


def to_recommended(product: Product) -> RecommendedProduct:
    return RecommendedProduct(
        id=product.id,
        title=product.title,
        slug=product.slug,
        price=float(product.price or 0),
        featured_image=product.featured_image,
        average_rating=float(product.average_rating or 0),
        total_reviews=int(product.total_reviews or 0),
    )


class CatalogReader:
    """Product lookups used by scoring, recommendations and reports."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_product(self, product_id: str) -> Optional[Product]:
        async with self._session_factory() as session:
            return await session.get(Product, product_id)

    async def require_product(self, product_id: str) -> Product:
        """
        Raises:
            EntityNotFoundError: If the product is not in the catalog
        """
        product = await self.get_product(product_id)
        if product is None:
            raise EntityNotFoundError("product", product_id)
        return product

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(Product).where(Product.id.in_(ids)))
            return {product.id: product for product in result.scalars()}

    async def resolve(self, product_ids: List[str]) -> List[RecommendedProduct]:
        """Catalog details in the given order; ids missing from the catalog are dropped."""
        products = await self.get_products(product_ids)
        return [to_recommended(products[pid]) for pid in product_ids if pid in products]

    async def get_top_rated_in_category(self, category_id: str, limit: int) -> List[Product]:
        stmt = (
            select(Product)
            .where(Product.category_id == category_id, Product.status == ProductStatus.PUBLISHED)
            .order_by(Product.average_rating.desc(), Product.total_reviews.desc(), Product.id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars())
