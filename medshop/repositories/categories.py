from __future__ import annotations

from datetime import datetime
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import normalise

Executor = Database | Session

_COLUMNS = """
    id, name, slug, description, parent_id, image_url, display_order, is_active,
    created_at, updated_at
"""

UPDATABLE_FIELDS = (
    "name",
    "slug",
    "description",
    "parent_id",
    "image_url",
    "display_order",
    "is_active",
)


def _normalise_category(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        ints=("display_order", "product_count"),
        bools=("is_active",),
        datetimes=("created_at", "updated_at"),
    )


async def list_categories(db: Executor, *, include_inactive: bool = False) -> list[dict[str, Any]]:
    where = "" if include_inactive else " WHERE c.is_active = %s"
    params: tuple = () if include_inactive else (True,)
    rows = await db.fetch_all(
        f"""
        SELECT c.id, c.name, c.slug, c.description, c.parent_id, c.image_url,
               c.display_order, c.is_active, c.created_at, c.updated_at,
               (SELECT COUNT(*) FROM products p WHERE p.category_id = c.id) AS product_count
        FROM categories c{where}
        ORDER BY c.display_order, c.name
        """,
        params,
    )
    return [_normalise_category(row) for row in rows]


async def get_category(db: Executor, category_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one(f"SELECT {_COLUMNS} FROM categories WHERE id = %s", (category_id,))
    return _normalise_category(row)


async def slug_exists(db: Executor, slug: str, *, exclude_id: str | None = None) -> bool:
    if exclude_id:
        row = await db.fetch_one(
            "SELECT id FROM categories WHERE slug = %s AND id <> %s", (slug, exclude_id)
        )
    else:
        row = await db.fetch_one("SELECT id FROM categories WHERE slug = %s", (slug,))
    return row is not None


async def list_children(db: Executor, parent_id: str) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        f"SELECT {_COLUMNS} FROM categories WHERE parent_id = %s ORDER BY display_order, name",
        (parent_id,),
    )
    return [_normalise_category(row) for row in rows]


async def get_parent_id(db: Executor, category_id: str) -> str | None:
    row = await db.fetch_one("SELECT parent_id FROM categories WHERE id = %s", (category_id,))
    return row["parent_id"] if row else None


async def create_category(
    db: Executor,
    *,
    category_id: str,
    name: str,
    slug: str,
    description: str | None,
    parent_id: str | None,
    image_url: str | None,
    display_order: int,
    is_active: bool,
    created_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO categories (
            id, name, slug, description, parent_id, image_url, display_order,
            is_active, created_at, updated_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            category_id,
            name,
            slug,
            description,
            parent_id,
            image_url,
            display_order,
            is_active,
            created_at,
            created_at,
        ),
    )


async def update_category(
    db: Executor, category_id: str, updates: dict[str, Any], when: datetime
) -> int:
    fields = [field for field in UPDATABLE_FIELDS if field in updates]
    if not fields:
        return 0
    assignments = ", ".join(f"{field} = %s" for field in fields)
    params = [updates[field] for field in fields]
    params.extend([when, category_id])
    return await db.execute(
        f"UPDATE categories SET {assignments}, updated_at = %s WHERE id = %s",
        params,
    )


async def count_products(db: Executor, category_id: str) -> int:
    row = await db.fetch_one(
        "SELECT COUNT(*) AS total FROM products WHERE category_id = %s", (category_id,)
    )
    return int(row["total"]) if row else 0


async def count_children(db: Executor, category_id: str) -> int:
    row = await db.fetch_one(
        "SELECT COUNT(*) AS total FROM categories WHERE parent_id = %s", (category_id,)
    )
    return int(row["total"]) if row else 0


async def delete_category(db: Executor, category_id: str) -> int:
    return await db.execute("DELETE FROM categories WHERE id = %s", (category_id,))


async def set_display_order(
    db: Executor, category_id: str, display_order: int, when: datetime
) -> int:
    return await db.execute(
        "UPDATE categories SET display_order = %s, updated_at = %s WHERE id = %s",
        (display_order, when, category_id),
    )
