from __future__ import annotations

import time
from decimal import Decimal
from typing import Any

from medshop.core.database import Database, utcnow
from medshop.core.errors import AppError
from medshop.core.logging import log_info
from medshop.repositories import orders as order_repo
from medshop.repositories import products as product_repo
from medshop.repositories.rows import new_id
from medshop.services.cache import CacheService, cached
from medshop.services.pagination import page_window, pagination
from medshop.services.slugs import slugify

PRODUCT_CACHE_TAG = "products"


class ProductService:
    def __init__(self, db: Database, cache: CacheService) -> None:
        self.db = db
        self.cache = cache

    async def _invalidate(self) -> None:
        await self.cache.invalidate_by_tags([PRODUCT_CACHE_TAG])

    async def create_product(self, data: dict[str, Any], created_by: str | None) -> dict[str, Any]:
        base_slug = slugify(data["name"])
        if not base_slug:
            raise AppError("Product name must contain letters or digits", 400)
        product_id = new_id()
        async with self.db.transaction() as session:
            slug = base_slug
            if await product_repo.slug_exists(session, slug):
                slug = f"{base_slug}-{int(time.time() * 1000)}"
            await product_repo.create_product(
                session,
                product_id=product_id,
                data={**data, "slug": slug, "created_by": created_by},
                created_at=utcnow(),
            )
            product = await product_repo.get_product(session, product_id)

        await self._invalidate()
        log_info("Product created", product_id=product_id, slug=slug)
        return product

    async def create_variant(self, product_id: str, data: dict[str, Any]) -> dict[str, Any]:
        variant_id = new_id()
        async with self.db.transaction() as session:
            if not await product_repo.get_product(session, product_id):
                raise AppError("Product not found", 404)
            if await product_repo.variant_sku_exists(session, data["sku"]):
                raise AppError(f"SKU {data['sku']} already exists", 400)
            await product_repo.create_variant(
                session,
                variant_id=variant_id,
                product_id=product_id,
                data=data,
                created_at=utcnow(),
            )
            variant = await product_repo.get_variant(session, variant_id)

        await self._invalidate()
        return variant

    async def update_product(self, product_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        changes = {
            key: value
            for key, value in updates.items()
            if key in product_repo.PRODUCT_UPDATABLE_FIELDS and value is not None
        }
        if not changes:
            raise AppError("No fields to update", 400)

        async with self.db.transaction() as session:
            if not await product_repo.get_product(session, product_id):
                raise AppError("Product not found", 404)
            await product_repo.update_product(session, product_id, changes, utcnow())
            product = await product_repo.get_product(session, product_id)

        await self._invalidate()
        return product

    @cached(ttl=300, tags=(PRODUCT_CACHE_TAG,))
    async def list_products(
        self,
        *,
        category_id: str | None = None,
        brand_id: str | None = None,
        status: str | None = "active",
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        filters = product_repo.ProductFilters(
            category_id=category_id,
            brand_id=brand_id,
            status=status,
            min_price=min_price,
            max_price=max_price,
            search=search,
        )
        page, limit, offset = page_window(page, limit)
        products = await product_repo.list_products(
            self.db,
            filters,
            sort_by=sort_by,
            sort_desc=sort_order.lower() != "asc",
            limit=limit,
            offset=offset,
        )
        total = await product_repo.count_products(self.db, filters)
        return {"products": products, "pagination": pagination(page, limit, total)}

    @cached(ttl=300, tags=(PRODUCT_CACHE_TAG,))
    async def get_product(self, product_id: str) -> dict[str, Any]:
        product = await product_repo.get_product(self.db, product_id)
        if not product:
            raise AppError("Product not found", 404)
        product["variants"] = await product_repo.list_variants(self.db, product_id)
        product["images"] = await product_repo.list_images(self.db, product_id)
        product["attributes"] = await product_repo.list_attributes(self.db, product_id)
        return product

    async def delete_product(self, product_id: str) -> dict[str, str]:
        async with self.db.transaction() as session:
            if not await product_repo.get_product(session, product_id):
                raise AppError("Product not found", 404)
            if await order_repo.count_product_order_items(session, product_id):
                raise AppError("Product has existing orders and cannot be deleted", 400)
            await product_repo.delete_product(session, product_id)

        await self._invalidate()
        log_info("Product deleted", product_id=product_id)
        return {"message": "Product deleted successfully"}

    async def search_products(self, term: str, limit: int = 10) -> list[dict[str, Any]]:
        term = term.strip()
        if not term:
            return []
        return await product_repo.search_products(self.db, term, max(1, min(limit, 50)))
