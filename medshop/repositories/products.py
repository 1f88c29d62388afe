from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import dump_json, like, normalise

Executor = Database | Session

PRODUCT_UPDATABLE_FIELDS = (
    "name",
    "sku",
    "description",
    "short_description",
    "category_id",
    "brand_id",
    "supplier_id",
    "status",
    "is_featured",
    "warranty_months",
    "tags",
    "meta_title",
    "meta_description",
)
_JSON_FIELDS = {"tags"}

SORTABLE_COLUMNS = {
    "created_at": "p.created_at",
    "updated_at": "p.updated_at",
    "name": "p.name",
    "status": "p.status",
}


@dataclass(slots=True)
class ProductFilters:
    category_id: str | None = None
    brand_id: str | None = None
    status: str | None = "active"
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    search: str | None = None


def _normalise_product(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        ints=("warranty_months",),
        money_fields=("min_price", "max_price"),
        bools=("is_featured",),
        datetimes=("created_at", "updated_at"),
        json_fields=("tags",),
    )


def _normalise_variant(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        ints=("stock_quantity", "reserved_quantity", "low_stock_threshold"),
        money_fields=("price", "cost", "compare_price"),
        bools=("is_active",),
        datetimes=("created_at", "updated_at"),
        json_fields=("attributes",),
    )


def _filter_clause(filters: ProductFilters) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if filters.category_id:
        clauses.append("p.category_id = %s")
        params.append(filters.category_id)
    if filters.brand_id:
        clauses.append("p.brand_id = %s")
        params.append(filters.brand_id)
    if filters.status:
        clauses.append("p.status = %s")
        params.append(filters.status)
    if filters.search:
        clauses.append("(p.name LIKE %s OR p.description LIKE %s OR p.sku LIKE %s)")
        term = like(filters.search)
        params.extend([term, term, term])
    if filters.min_price is not None or filters.max_price is not None:
        price_clauses = ["pv.product_id = p.id"]
        if filters.min_price is not None:
            price_clauses.append("pv.price >= %s")
            params.append(filters.min_price)
        if filters.max_price is not None:
            price_clauses.append("pv.price <= %s")
            params.append(filters.max_price)
        clauses.append(
            f"EXISTS (SELECT 1 FROM product_variants pv WHERE {' AND '.join(price_clauses)})"
        )
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


async def list_products(
    db: Executor,
    filters: ProductFilters,
    *,
    sort_by: str,
    sort_desc: bool,
    limit: int,
    offset: int,
) -> list[dict[str, Any]]:
    where, params = _filter_clause(filters)
    order_column = SORTABLE_COLUMNS.get(sort_by, "p.created_at")
    direction = "DESC" if sort_desc else "ASC"
    rows = await db.fetch_all(
        f"""
        SELECT p.*, c.name AS category_name, b.name AS brand_name,
               (SELECT MIN(price) FROM product_variants v WHERE v.product_id = p.id) AS min_price,
               (SELECT MAX(price) FROM product_variants v WHERE v.product_id = p.id) AS max_price
        FROM products p
        LEFT JOIN categories c ON c.id = p.category_id
        LEFT JOIN brands b ON b.id = p.brand_id
        {where}
        ORDER BY {order_column} {direction}
        LIMIT %s OFFSET %s
        """,
        (*params, limit, offset),
    )
    return [_normalise_product(row) for row in rows]


async def count_products(db: Executor, filters: ProductFilters) -> int:
    where, params = _filter_clause(filters)
    row = await db.fetch_one(f"SELECT COUNT(*) AS total FROM products p{where}", params)
    return int(row["total"]) if row else 0


async def get_product(db: Executor, product_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one(
        """
        SELECT p.*, c.name AS category_name, b.name AS brand_name, s.name AS supplier_name
        FROM products p
        LEFT JOIN categories c ON c.id = p.category_id
        LEFT JOIN brands b ON b.id = p.brand_id
        LEFT JOIN suppliers s ON s.id = p.supplier_id
        WHERE p.id = %s
        """,
        (product_id,),
    )
    return _normalise_product(row)


async def slug_exists(db: Executor, slug: str) -> bool:
    row = await db.fetch_one("SELECT id FROM products WHERE slug = %s", (slug,))
    return row is not None


async def create_product(db: Executor, *, product_id: str, data: dict[str, Any], created_at: datetime) -> None:
    await db.execute(
        """
        INSERT INTO products (
            id, name, slug, sku, description, short_description, category_id,
            brand_id, supplier_id, status, is_featured, warranty_months, tags,
            meta_title, meta_description, created_by, created_at, updated_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            product_id,
            data["name"],
            data["slug"],
            data.get("sku"),
            data.get("description"),
            data.get("short_description"),
            data.get("category_id"),
            data.get("brand_id"),
            data.get("supplier_id"),
            data.get("status") or "draft",
            bool(data.get("is_featured")),
            data.get("warranty_months") or 12,
            dump_json(data.get("tags")),
            data.get("meta_title") or data["name"],
            data.get("meta_description") or data.get("short_description"),
            data.get("created_by"),
            created_at,
            created_at,
        ),
    )


async def update_product(
    db: Executor, product_id: str, updates: dict[str, Any], when: datetime
) -> int:
    fields = [field for field in PRODUCT_UPDATABLE_FIELDS if field in updates]
    if not fields:
        return 0
    params: list[Any] = []
    for field in fields:
        value = updates[field]
        params.append(dump_json(value) if field in _JSON_FIELDS else value)
    assignments = ", ".join(f"{field} = %s" for field in fields)
    params.extend([when, product_id])
    return await db.execute(
        f"UPDATE products SET {assignments}, updated_at = %s WHERE id = %s",
        params,
    )


async def delete_product(db: Executor, product_id: str) -> int:
    return await db.execute("DELETE FROM products WHERE id = %s", (product_id,))


async def search_products(db: Executor, term: str, limit: int) -> list[dict[str, Any]]:
    pattern = like(term)
    rows = await db.fetch_all(
        """
        SELECT p.*, c.name AS category_name
        FROM products p
        LEFT JOIN categories c ON c.id = p.category_id
        WHERE p.status = 'active'
          AND (p.name LIKE %s OR p.description LIKE %s OR p.sku LIKE %s)
        ORDER BY p.name
        LIMIT %s
        """,
        (pattern, pattern, pattern, limit),
    )
    return [_normalise_product(row) for row in rows]


async def list_variants(db: Executor, product_id: str) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        "SELECT * FROM product_variants WHERE product_id = %s ORDER BY created_at, sku",
        (product_id,),
    )
    return [_normalise_variant(row) for row in rows]


async def list_images(db: Executor, product_id: str) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT id, product_id, variant_id, url, alt_text, display_order, is_primary
        FROM product_images
        WHERE product_id = %s
        ORDER BY display_order, created_at
        """,
        (product_id,),
    )
    return [normalise(row, ints=("display_order",), bools=("is_primary",)) for row in rows]


async def list_attributes(db: Executor, product_id: str) -> list[dict[str, Any]]:
    return await db.fetch_all(
        "SELECT id, name, value FROM product_attributes WHERE product_id = %s ORDER BY name",
        (product_id,),
    )


async def create_variant(
    db: Executor, *, variant_id: str, product_id: str, data: dict[str, Any], created_at: datetime
) -> None:
    await db.execute(
        """
        INSERT INTO product_variants (
            id, product_id, sku, barcode, name, price, cost, compare_price,
            stock_quantity, low_stock_threshold, weight, attributes, is_active,
            created_at, updated_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            variant_id,
            product_id,
            data["sku"],
            data.get("barcode"),
            data["name"],
            data["price"],
            data.get("cost") or 0,
            data.get("compare_price"),
            data.get("stock_quantity") or 0,
            data.get("low_stock_threshold") or 10,
            data.get("weight"),
            dump_json(data.get("attributes")),
            data.get("is_active", True),
            created_at,
            created_at,
        ),
    )


async def get_variant(db: Executor, variant_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one("SELECT * FROM product_variants WHERE id = %s", (variant_id,))
    return _normalise_variant(row)


async def get_active_variant_for_sale(db: Session, variant_id: str) -> dict[str, Any] | None:
    """Load a sellable variant with its product name, locking the row on MySQL."""
    row = await db.fetch_one(
        f"""
        SELECT v.id, v.product_id, v.sku, v.name, v.price, v.stock_quantity,
               v.reserved_quantity, v.low_stock_threshold, p.name AS product_name
        FROM product_variants v
        JOIN products p ON p.id = v.product_id
        WHERE v.id = %s AND v.is_active = %s
        {db.lock_clause}
        """,
        (variant_id, True),
    )
    return _normalise_variant(row)


async def reserve_stock(db: Executor, variant_id: str, quantity: int, when: datetime) -> None:
    await db.execute(
        """
        UPDATE product_variants
        SET stock_quantity = stock_quantity - %s,
            reserved_quantity = reserved_quantity + %s,
            updated_at = %s
        WHERE id = %s
        """,
        (quantity, quantity, when, variant_id),
    )


async def release_reservation(
    db: Executor,
    variant_id: str,
    quantity: int,
    *,
    restock: bool,
    held: bool = True,
    when: datetime,
) -> None:
    """Return ``quantity`` units: to stock when ``restock``, off the reservation when ``held``."""
    restock_quantity = quantity if restock else 0
    released = quantity if held else 0
    await db.execute(
        """
        UPDATE product_variants
        SET stock_quantity = stock_quantity + %s,
            reserved_quantity = CASE
                WHEN reserved_quantity - %s < 0 THEN 0
                ELSE reserved_quantity - %s
            END,
            updated_at = %s
        WHERE id = %s
        """,
        (restock_quantity, released, released, when, variant_id),
    )


async def variant_sku_exists(db: Executor, sku: str) -> bool:
    row = await db.fetch_one("SELECT id FROM product_variants WHERE sku = %s", (sku,))
    return row is not None
