from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import like, normalise

Executor = Database | Session

INVENTORY_SORT_COLUMNS = {
    "updated_at": "i.updated_at",
    "created_at": "i.created_at",
    "quantity": "i.quantity",
    "product_name": "p.name",
}


@dataclass(slots=True)
class InventoryFilters:
    warehouse_id: str | None = None
    variant_id: str | None = None
    product_id: str | None = None
    low_stock: bool = False
    search: str | None = None


@dataclass(slots=True)
class TransactionFilters:
    warehouse_id: str | None = None
    variant_id: str | None = None
    type: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    user_id: str | None = None


def _normalise_inventory(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        ints=("quantity", "reserved_quantity", "low_stock_threshold"),
        money_fields=("price", "cost"),
        datetimes=("last_counted_at", "created_at", "updated_at"),
    )


async def get_inventory_row(
    db: Executor, warehouse_id: str, variant_id: str, *, for_update: bool = False
) -> dict[str, Any] | None:
    lock = db.lock_clause if for_update else ""
    row = await db.fetch_one(
        f"""
        SELECT id, warehouse_id, variant_id, quantity, reserved_quantity
        FROM inventory
        WHERE warehouse_id = %s AND variant_id = %s{lock}
        """,
        (warehouse_id, variant_id),
    )
    return _normalise_inventory(row)


async def create_inventory_row(
    db: Executor, *, inventory_id: str, warehouse_id: str, variant_id: str, when: datetime
) -> None:
    await db.execute(
        """
        INSERT INTO inventory (
            id, warehouse_id, variant_id, quantity, reserved_quantity, created_at, updated_at
        ) VALUES (%s, %s, %s, 0, 0, %s, %s)
        """,
        (inventory_id, warehouse_id, variant_id, when, when),
    )


async def set_quantity(db: Executor, inventory_id: str, quantity: int, when: datetime) -> None:
    await db.execute(
        "UPDATE inventory SET quantity = %s, updated_at = %s WHERE id = %s",
        (quantity, when, inventory_id),
    )


async def mark_counted(db: Executor, inventory_id: str, when: datetime) -> None:
    await db.execute(
        "UPDATE inventory SET last_counted_at = %s WHERE id = %s",
        (when, inventory_id),
    )


async def recompute_variant_stock(db: Executor, variant_id: str, when: datetime) -> int:
    """Reset ``stock_quantity`` to the sum of the variant's warehouse rows."""
    await db.execute(
        """
        UPDATE product_variants
        SET stock_quantity = (
                SELECT COALESCE(SUM(quantity), 0) FROM inventory WHERE variant_id = %s
            ),
            updated_at = %s
        WHERE id = %s
        """,
        (variant_id, when, variant_id),
    )
    row = await db.fetch_one(
        "SELECT stock_quantity FROM product_variants WHERE id = %s", (variant_id,)
    )
    return int(row["stock_quantity"]) if row else 0


async def get_variant_threshold(db: Executor, variant_id: str) -> int | None:
    row = await db.fetch_one(
        "SELECT low_stock_threshold FROM product_variants WHERE id = %s", (variant_id,)
    )
    if not row:
        return None
    return int(row["low_stock_threshold"])


async def insert_transaction(
    db: Executor,
    *,
    transaction_id: str,
    warehouse_id: str,
    variant_id: str,
    type: str,
    quantity: int,
    quantity_before: int,
    quantity_after: int,
    reference_type: str | None,
    reference_id: str | None,
    notes: str | None,
    created_by: str | None,
    created_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO inventory_transactions (
            id, warehouse_id, variant_id, type, quantity, quantity_before,
            quantity_after, reference_type, reference_id, notes, created_by, created_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            transaction_id,
            warehouse_id,
            variant_id,
            type,
            quantity,
            quantity_before,
            quantity_after,
            reference_type,
            reference_id,
            notes,
            created_by,
            created_at,
        ),
    )


def _inventory_filters(filters: InventoryFilters) -> tuple[str, list[Any]]:
    clauses = ["w.is_active = %s"]
    params: list[Any] = [True]
    if filters.warehouse_id:
        clauses.append("i.warehouse_id = %s")
        params.append(filters.warehouse_id)
    if filters.variant_id:
        clauses.append("i.variant_id = %s")
        params.append(filters.variant_id)
    if filters.product_id:
        clauses.append("pv.product_id = %s")
        params.append(filters.product_id)
    if filters.low_stock:
        clauses.append("i.quantity <= pv.low_stock_threshold")
    if filters.search:
        clauses.append("(p.name LIKE %s OR pv.sku LIKE %s OR pv.barcode = %s)")
        term = like(filters.search)
        params.extend([term, term, filters.search.strip()])
    return " WHERE " + " AND ".join(clauses), params


_INVENTORY_FROM = """
    FROM inventory i
    JOIN warehouses w ON w.id = i.warehouse_id
    JOIN product_variants pv ON pv.id = i.variant_id
    JOIN products p ON p.id = pv.product_id
"""


async def list_inventory(
    db: Executor,
    filters: InventoryFilters,
    *,
    sort_by: str,
    sort_desc: bool,
    limit: int,
    offset: int,
) -> list[dict[str, Any]]:
    where, params = _inventory_filters(filters)
    order_column = INVENTORY_SORT_COLUMNS.get(sort_by, "i.updated_at")
    direction = "DESC" if sort_desc else "ASC"
    rows = await db.fetch_all(
        f"""
        SELECT i.id, i.warehouse_id, i.variant_id, i.quantity, i.reserved_quantity,
               i.location, i.last_counted_at, i.created_at, i.updated_at,
               w.name AS warehouse_name, w.code AS warehouse_code,
               pv.sku AS variant_sku, pv.name AS variant_name, pv.barcode, pv.price,
               pv.low_stock_threshold, p.name AS product_name, p.id AS product_id
        {_INVENTORY_FROM}{where}
        ORDER BY {order_column} {direction}
        LIMIT %s OFFSET %s
        """,
        (*params, limit, offset),
    )
    return [_normalise_inventory(row) for row in rows]


async def count_inventory(db: Executor, filters: InventoryFilters) -> int:
    where, params = _inventory_filters(filters)
    row = await db.fetch_one(f"SELECT COUNT(*) AS total {_INVENTORY_FROM}{where}", params)
    return int(row["total"]) if row else 0


async def list_low_stock(
    db: Executor, *, warehouse_id: str | None = None
) -> list[dict[str, Any]]:
    clauses = [
        "i.quantity <= pv.low_stock_threshold",
        "w.is_active = %s",
        "pv.is_active = %s",
    ]
    params: list[Any] = [True, True]
    if warehouse_id:
        clauses.append("i.warehouse_id = %s")
        params.append(warehouse_id)
    rows = await db.fetch_all(
        f"""
        SELECT i.id, i.warehouse_id, i.variant_id, i.quantity, i.reserved_quantity,
               w.name AS warehouse_name, pv.sku, pv.name AS variant_name,
               pv.low_stock_threshold, p.name AS product_name, p.id AS product_id,
               s.name AS supplier_name, s.email AS supplier_email
        FROM inventory i
        JOIN warehouses w ON w.id = i.warehouse_id
        JOIN product_variants pv ON pv.id = i.variant_id
        JOIN products p ON p.id = pv.product_id
        LEFT JOIN suppliers s ON s.id = p.supplier_id
        WHERE {" AND ".join(clauses)}
        """,
        params,
    )
    return [_normalise_inventory(row) for row in rows]


def _transaction_filters(filters: TransactionFilters) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if filters.warehouse_id:
        clauses.append("it.warehouse_id = %s")
        params.append(filters.warehouse_id)
    if filters.variant_id:
        clauses.append("it.variant_id = %s")
        params.append(filters.variant_id)
    if filters.type:
        clauses.append("it.type = %s")
        params.append(filters.type)
    if filters.date_from:
        clauses.append("it.created_at >= %s")
        params.append(filters.date_from)
    if filters.date_to:
        clauses.append("it.created_at <= %s")
        params.append(filters.date_to)
    if filters.user_id:
        clauses.append("it.created_by = %s")
        params.append(filters.user_id)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


async def list_transactions(
    db: Executor,
    filters: TransactionFilters,
    *,
    sort_desc: bool,
    limit: int,
    offset: int,
) -> list[dict[str, Any]]:
    where, params = _transaction_filters(filters)
    direction = "DESC" if sort_desc else "ASC"
    rows = await db.fetch_all(
        f"""
        SELECT it.id, it.warehouse_id, it.variant_id, it.type, it.quantity,
               it.quantity_before, it.quantity_after, it.reference_type,
               it.reference_id, it.notes, it.created_by, it.created_at,
               w.name AS warehouse_name, pv.sku, pv.name AS variant_name,
               p.name AS product_name, u.email AS created_by_email,
               u.first_name AS created_by_first_name, u.last_name AS created_by_last_name
        FROM inventory_transactions it
        JOIN warehouses w ON w.id = it.warehouse_id
        JOIN product_variants pv ON pv.id = it.variant_id
        JOIN products p ON p.id = pv.product_id
        LEFT JOIN users u ON u.id = it.created_by
        {where}
        ORDER BY it.created_at {direction}
        LIMIT %s OFFSET %s
        """,
        (*params, limit, offset),
    )
    return [
        normalise(row, ints=("quantity", "quantity_before", "quantity_after"), datetimes=("created_at",))
        for row in rows
    ]


async def count_transactions(db: Executor, filters: TransactionFilters) -> int:
    where, params = _transaction_filters(filters)
    row = await db.fetch_one(
        f"SELECT COUNT(*) AS total FROM inventory_transactions it{where}", params
    )
    return int(row["total"]) if row else 0


async def list_stock_positions(
    db: Executor, *, warehouse_id: str | None = None
) -> list[dict[str, Any]]:
    """Rows with positive stock joined to cost, price and category for valuation."""
    clauses = ["i.quantity > 0"]
    params: list[Any] = []
    if warehouse_id:
        clauses.append("i.warehouse_id = %s")
        params.append(warehouse_id)
    rows = await db.fetch_all(
        f"""
        SELECT i.quantity, pv.id AS variant_id, pv.cost, pv.price, p.id AS product_id,
               c.id AS category_id, c.name AS category_name
        FROM inventory i
        JOIN product_variants pv ON pv.id = i.variant_id
        JOIN products p ON p.id = pv.product_id
        LEFT JOIN categories c ON c.id = p.category_id
        WHERE {" AND ".join(clauses)}
        """,
        params,
    )
    return [_normalise_inventory(row) for row in rows]


async def list_variant_rows(db: Session, variant_id: str) -> list[dict[str, Any]]:
    """Warehouse rows for a variant, largest quantity first, locked on MySQL."""
    rows = await db.fetch_all(
        f"""
        SELECT id, warehouse_id, variant_id, quantity, reserved_quantity
        FROM inventory
        WHERE variant_id = %s AND quantity > 0
        ORDER BY quantity DESC, warehouse_id{db.lock_clause}
        """,
        (variant_id,),
    )
    return [_normalise_inventory(row) for row in rows]


async def reserve_from_row(db: Executor, inventory_id: str, quantity: int, when: datetime) -> None:
    await db.execute(
        """
        UPDATE inventory
        SET quantity = quantity - %s, reserved_quantity = reserved_quantity + %s,
            updated_at = %s
        WHERE id = %s
        """,
        (quantity, quantity, when, inventory_id),
    )


async def release_row_reservation(
    db: Executor,
    inventory_id: str,
    quantity: int,
    *,
    restock: bool,
    held: bool = True,
    when: datetime,
) -> None:
    restock_quantity = quantity if restock else 0
    released = quantity if held else 0
    await db.execute(
        """
        UPDATE inventory
        SET quantity = quantity + %s,
            reserved_quantity = CASE
                WHEN reserved_quantity - %s < 0 THEN 0
                ELSE reserved_quantity - %s
            END,
            updated_at = %s
        WHERE id = %s
        """,
        (restock_quantity, released, released, when, inventory_id),
    )
