from __future__ import annotations

from datetime import datetime
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import coerce_decimal, like, normalise

Executor = Database | Session

COUNTER_CHANNEL = "pos"

_PAID_SALES = """
    o.sales_channel = %s AND o.payment_status = 'paid'
    AND o.created_at >= %s AND o.created_at < %s
"""


async def list_sales(db: Executor, start: datetime, end: datetime) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT o.id, o.order_number, o.customer_id, o.status, o.payment_status,
               o.payment_method, o.subtotal, o.discount_amount, o.tax_amount,
               o.total_amount, o.processed_by, o.created_at,
               u.first_name AS customer_first_name, u.last_name AS customer_last_name,
               u.phone AS customer_phone
        FROM orders o
        LEFT JOIN users u ON u.id = o.customer_id
        WHERE o.sales_channel = %s AND o.created_at >= %s AND o.created_at < %s
        ORDER BY o.created_at DESC, o.order_number DESC
        """,
        (COUNTER_CHANNEL, start, end),
    )
    return [
        normalise(
            row,
            money_fields=("subtotal", "discount_amount", "tax_amount", "total_amount"),
            datetimes=("created_at",),
        )
        for row in rows
    ]


async def sales_summary(db: Executor, start: datetime, end: datetime) -> dict[str, Any]:
    params = (COUNTER_CHANNEL, start, end)
    totals = await db.fetch_one(
        f"""
        SELECT COUNT(*) AS total_orders,
               COALESCE(SUM(o.total_amount), 0) AS total_revenue,
               COALESCE(SUM(o.subtotal), 0) AS total_subtotal,
               COALESCE(SUM(o.tax_amount), 0) AS total_tax,
               COALESCE(SUM(o.discount_amount), 0) AS total_discount,
               COUNT(DISTINCT o.customer_id) AS total_customers
        FROM orders o
        WHERE {_PAID_SALES}
        """,
        params,
    )
    items = await db.fetch_one(
        f"""
        SELECT COALESCE(SUM(oi.quantity), 0) AS total_items_sold
        FROM order_items oi
        JOIN orders o ON o.id = oi.order_id
        WHERE {_PAID_SALES}
        """,
        params,
    )
    return {
        "total_orders": int(totals["total_orders"]),
        "total_revenue": coerce_decimal(totals["total_revenue"]),
        "total_subtotal": coerce_decimal(totals["total_subtotal"]),
        "total_tax": coerce_decimal(totals["total_tax"]),
        "total_discount": coerce_decimal(totals["total_discount"]),
        "total_customers": int(totals["total_customers"]),
        "total_items_sold": int(items["total_items_sold"]),
    }


async def payment_method_totals(
    db: Executor, start: datetime, end: datetime
) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        f"""
        SELECT o.payment_method, COUNT(*) AS order_count,
               COALESCE(SUM(o.total_amount), 0) AS amount
        FROM orders o
        WHERE {_PAID_SALES}
        GROUP BY o.payment_method
        ORDER BY o.payment_method
        """,
        (COUNTER_CHANNEL, start, end),
    )
    return [
        normalise(row, ints=("order_count",), money_fields=("amount",)) for row in rows
    ]


async def top_products(
    db: Executor, start: datetime, end: datetime, limit: int = 10
) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        f"""
        SELECT pv.product_id AS id, oi.product_name AS name,
               SUM(oi.quantity) AS quantity_sold,
               COALESCE(SUM(oi.total_amount), 0) AS revenue
        FROM order_items oi
        JOIN orders o ON o.id = oi.order_id
        JOIN product_variants pv ON pv.id = oi.variant_id
        WHERE {_PAID_SALES}
        GROUP BY pv.product_id, oi.product_name
        ORDER BY quantity_sold DESC, oi.product_name
        LIMIT %s
        """,
        (COUNTER_CHANNEL, start, end, limit),
    )
    return [
        normalise(row, ints=("quantity_sold",), money_fields=("revenue",)) for row in rows
    ]


async def search_sellable_variants(db: Executor, term: str, limit: int) -> list[dict[str, Any]]:
    """Active variants matching a scanned barcode, a SKU or a product name.

    An exact barcode match sorts first so a scan lands on the scanned item.
    """
    pattern = like(term)
    rows = await db.fetch_all(
        """
        SELECT pv.id AS variant_id, pv.sku, pv.barcode, pv.name AS variant_name,
               pv.price, pv.stock_quantity, p.id AS product_id, p.name AS product_name,
               c.name AS category_name, c.slug AS category_slug
        FROM product_variants pv
        JOIN products p ON p.id = pv.product_id
        LEFT JOIN categories c ON c.id = p.category_id
        WHERE p.status = 'active' AND pv.is_active = %s
          AND (pv.barcode = %s OR pv.sku LIKE %s OR pv.barcode LIKE %s OR p.name LIKE %s)
        ORDER BY CASE WHEN pv.barcode = %s THEN 0 ELSE 1 END, p.name, pv.sku
        LIMIT %s
        """,
        (True, term, pattern, pattern, pattern, term, limit),
    )
    return [
        normalise(row, ints=("stock_quantity",), money_fields=("price",)) for row in rows
    ]
