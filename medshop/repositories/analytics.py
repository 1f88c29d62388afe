"""Read-only row sources for the analytics service.

Grouping by date parts differs between MySQL and SQLite, so these queries
return plain rows and leave bucketing to the caller.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import normalise

Executor = Database | Session

EXCLUDED_STATUSES = ("cancelled", "refunded")


async def list_orders_between(
    db: Executor,
    start: datetime,
    end: datetime,
    *,
    include_closed: bool = False,
) -> list[dict[str, Any]]:
    status_clause = "" if include_closed else " AND status NOT IN (%s, %s)"
    params: list[Any] = [start, end]
    if not include_closed:
        params.extend(EXCLUDED_STATUSES)
    rows = await db.fetch_all(
        f"""
        SELECT id, customer_id, status, sales_channel, total_amount, created_at
        FROM orders
        WHERE created_at >= %s AND created_at <= %s{status_clause}
        ORDER BY created_at
        """,
        params,
    )
    return [
        normalise(row, money_fields=("total_amount",), datetimes=("created_at",)) for row in rows
    ]


async def list_sold_items_since(db: Executor, since: datetime) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT oi.order_id, oi.variant_id, oi.sku, oi.quantity, oi.unit_price,
               oi.total_amount, pv.product_id, p.name AS product_name
        FROM order_items oi
        JOIN orders o ON o.id = oi.order_id
        JOIN product_variants pv ON pv.id = oi.variant_id
        JOIN products p ON p.id = pv.product_id
        WHERE o.created_at >= %s AND o.status NOT IN (%s, %s)
        """,
        (since, *EXCLUDED_STATUSES),
    )
    return [
        normalise(row, ints=("quantity",), money_fields=("unit_price", "total_amount"))
        for row in rows
    ]


async def list_variant_stock(db: Executor) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT pv.id AS variant_id, pv.sku, pv.name AS variant_name, pv.price,
               pv.stock_quantity, pv.low_stock_threshold, p.id AS product_id,
               p.name AS product_name, c.id AS category_id, c.name AS category_name
        FROM product_variants pv
        JOIN products p ON p.id = pv.product_id
        LEFT JOIN categories c ON c.id = p.category_id
        WHERE pv.is_active = %s
        """,
        (True,),
    )
    return [
        normalise(row, ints=("stock_quantity", "low_stock_threshold"), money_fields=("price",))
        for row in rows
    ]


async def list_new_customers(db: Executor, start: datetime, end: datetime) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT u.id, u.created_at, first_order.first_order_at
        FROM users u
        LEFT JOIN (
            SELECT customer_id, MIN(created_at) AS first_order_at
            FROM orders
            GROUP BY customer_id
        ) first_order ON first_order.customer_id = u.id
        WHERE u.role = 'customer' AND u.created_at >= %s AND u.created_at <= %s
        """,
        (start, end),
    )
    return [normalise(row, datetimes=("created_at", "first_order_at")) for row in rows]


async def list_customer_totals(db: Executor) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT customer_id, COUNT(*) AS order_count, SUM(total_amount) AS total_spent
        FROM orders
        WHERE status NOT IN (%s, %s) AND customer_id IS NOT NULL
        GROUP BY customer_id
        """,
        EXCLUDED_STATUSES,
    )
    return [normalise(row, ints=("order_count",), money_fields=("total_spent",)) for row in rows]


async def list_outbound_movements_since(db: Executor, since: datetime) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT variant_id, SUM(quantity) AS total_out
        FROM inventory_transactions
        WHERE type = 'out' AND created_at >= %s
        GROUP BY variant_id
        """,
        (since,),
    )
    return [normalise(row, ints=("total_out",)) for row in rows]


async def count_low_stock_rows(db: Executor) -> int:
    row = await db.fetch_one(
        """
        SELECT COUNT(*) AS total
        FROM inventory i
        JOIN product_variants pv ON pv.id = i.variant_id
        WHERE i.quantity <= pv.low_stock_threshold
        """
    )
    return int(row["total"]) if row else 0
