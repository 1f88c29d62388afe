from __future__ import annotations

from typing import Any, Iterable

from medshop.core.database import Database, Session, utcnow
from medshop.core.errors import AppError
from medshop.core.logging import log_info
from medshop.repositories import categories as category_repo
from medshop.repositories.rows import new_id
from medshop.services.cache import CacheService, cached
from medshop.services.slugs import slugify

CATEGORY_CACHE_TAG = "categories"
# Columns an update may clear; a null for any other field means "leave unchanged".
NULLABLE_FIELDS = ("description", "parent_id", "image_url")


def build_tree(categories: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Nest flat category rows under their parents, keeping display order.

    Rows whose parent is missing from the input are treated as roots.
    """
    nodes = {category["id"]: {**category, "children": []} for category in categories}
    roots: list[dict[str, Any]] = []
    for node in nodes.values():
        parent = nodes.get(node.get("parent_id"))
        if parent is None:
            roots.append(node)
        else:
            parent["children"].append(node)
    return roots


class CategoryService:
    def __init__(self, db: Database, cache: CacheService) -> None:
        self.db = db
        self.cache = cache

    @cached(ttl=600, tags=(CATEGORY_CACHE_TAG,))
    async def get_tree(self, include_inactive: bool = False) -> list[dict[str, Any]]:
        rows = await category_repo.list_categories(self.db, include_inactive=include_inactive)
        return build_tree(rows)

    async def get_category(self, category_id: str) -> dict[str, Any]:
        category = await category_repo.get_category(self.db, category_id)
        if not category:
            raise AppError("Category not found", 404)
        category["children"] = await category_repo.list_children(self.db, category_id)
        category["product_count"] = await category_repo.count_products(self.db, category_id)
        return category

    async def _ensure_valid_parent(
        self, session: Session, category_id: str | None, parent_id: str
    ) -> None:
        if category_id is not None and parent_id == category_id:
            raise AppError("Category cannot be its own parent", 400)
        if not await category_repo.get_category(session, parent_id):
            raise AppError("Parent category not found", 404)
        if category_id is None:
            return

        # Walk the proposed parent's ancestors; meeting the category means a cycle.
        seen: set[str] = set()
        current: str | None = parent_id
        while current and current not in seen:
            if current == category_id:
                raise AppError("Category cannot be its own ancestor", 400)
            seen.add(current)
            current = await category_repo.get_parent_id(session, current)

    async def create_category(
        self,
        *,
        name: str,
        description: str | None = None,
        parent_id: str | None = None,
        image_url: str | None = None,
        display_order: int = 0,
        is_active: bool = True,
    ) -> dict[str, Any]:
        slug = slugify(name)
        if not slug:
            raise AppError("Category name must contain letters or digits", 400)
        category_id = new_id()
        async with self.db.transaction() as session:
            if await category_repo.slug_exists(session, slug):
                raise AppError("Category with this name already exists", 400)
            if parent_id:
                await self._ensure_valid_parent(session, None, parent_id)
            await category_repo.create_category(
                session,
                category_id=category_id,
                name=name,
                slug=slug,
                description=description,
                parent_id=parent_id,
                image_url=image_url,
                display_order=display_order,
                is_active=is_active,
                created_at=utcnow(),
            )
            category = await category_repo.get_category(session, category_id)

        await self.cache.invalidate_by_tags([CATEGORY_CACHE_TAG])
        log_info("Category created", category_id=category_id, slug=slug)
        return category

    async def update_category(self, category_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        changes = {
            key: value
            for key, value in updates.items()
            if key in category_repo.UPDATABLE_FIELDS
            and (value is not None or key in NULLABLE_FIELDS)
        }
        if not changes:
            raise AppError("No fields to update", 400)

        async with self.db.transaction() as session:
            existing = await category_repo.get_category(session, category_id)
            if not existing:
                raise AppError("Category not found", 404)

            if "name" in changes and changes["name"] != existing["name"]:
                slug = slugify(changes["name"])
                if not slug:
                    raise AppError("Category name must contain letters or digits", 400)
                if await category_repo.slug_exists(session, slug, exclude_id=category_id):
                    raise AppError("Category with this name already exists", 400)
                changes["slug"] = slug

            if changes.get("parent_id"):
                await self._ensure_valid_parent(session, category_id, changes["parent_id"])

            await category_repo.update_category(session, category_id, changes, utcnow())
            category = await category_repo.get_category(session, category_id)

        await self.cache.invalidate_by_tags([CATEGORY_CACHE_TAG])
        return category

    async def delete_category(self, category_id: str) -> dict[str, str]:
        async with self.db.transaction() as session:
            if not await category_repo.get_category(session, category_id):
                raise AppError("Category not found", 404)
            if await category_repo.count_products(session, category_id):
                raise AppError("Cannot delete category with products", 400)
            if await category_repo.count_children(session, category_id):
                raise AppError("Cannot delete category with subcategories", 400)
            await category_repo.delete_category(session, category_id)

        await self.cache.invalidate_by_tags([CATEGORY_CACHE_TAG])
        log_info("Category deleted", category_id=category_id)
        return {"message": "Category deleted successfully"}

    async def reorder(self, orders: list[dict[str, Any]]) -> dict[str, str]:
        now = utcnow()
        async with self.db.transaction() as session:
            for entry in orders:
                if not await category_repo.get_category(session, entry["id"]):
                    raise AppError(f"Category {entry['id']} not found", 404)
                await category_repo.set_display_order(
                    session, entry["id"], int(entry["display_order"]), now
                )

        await self.cache.invalidate_by_tags([CATEGORY_CACHE_TAG])
        return {"message": "Categories reordered successfully"}
