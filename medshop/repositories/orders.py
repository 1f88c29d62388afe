from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import dump_json, like, normalise

Executor = Database | Session

ORDER_SORT_COLUMNS = {
    "created_at": "o.created_at",
    "updated_at": "o.updated_at",
    "total_amount": "o.total_amount",
    "order_number": "o.order_number",
    "status": "o.status",
}

# Each status owns the timestamp column recording when it was entered.
STATUS_TIMESTAMP_COLUMNS = {
    "confirmed": "confirmed_at",
    "processing": "processing_at",
    "packed": "packed_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
    "refunded": "refunded_at",
}

_MONEY = ("subtotal", "discount_amount", "tax_amount", "shipping_fee", "total_amount")
_ORDER_DATETIMES = (
    "paid_at",
    "confirmed_at",
    "processing_at",
    "packed_at",
    "shipped_at",
    "delivered_at",
    "cancelled_at",
    "refunded_at",
    "created_at",
    "updated_at",
)


@dataclass(slots=True)
class OrderFilters:
    customer_id: str | None = None
    status: str | None = None
    payment_status: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None


def _normalise_order(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        ints=("item_count",),
        money_fields=_MONEY,
        datetimes=_ORDER_DATETIMES,
        json_fields=("metadata",),
    )


def _normalise_item(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        ints=("quantity", "position"),
        money_fields=("unit_price", "discount_amount", "tax_amount", "total_amount"),
        datetimes=("created_at",),
    )


async def count_orders_since(db: Executor, since: datetime) -> int:
    row = await db.fetch_one(
        "SELECT COUNT(*) AS total FROM orders WHERE created_at >= %s", (since,)
    )
    return int(row["total"]) if row else 0


async def insert_order(db: Executor, order: dict[str, Any]) -> None:
    await db.execute(
        """
        INSERT INTO orders (
            id, order_number, customer_id, status, payment_status, payment_method,
            sales_channel, subtotal, discount_amount, tax_amount, shipping_fee,
            total_amount, coupon_id, shipping_address_id, billing_address_id, notes,
            metadata, processed_by, created_at, updated_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            order["id"],
            order["order_number"],
            order["customer_id"],
            order["status"],
            order["payment_status"],
            order["payment_method"],
            order["sales_channel"],
            order["subtotal"],
            order["discount_amount"],
            order["tax_amount"],
            order["shipping_fee"],
            order["total_amount"],
            order.get("coupon_id"),
            order.get("shipping_address_id"),
            order.get("billing_address_id"),
            order.get("notes"),
            dump_json(order.get("metadata")),
            order.get("processed_by"),
            order["created_at"],
            order["created_at"],
        ),
    )


async def insert_order_item(db: Executor, item: dict[str, Any]) -> None:
    await db.execute(
        """
        INSERT INTO order_items (
            id, order_id, position, variant_id, product_name, variant_name, sku,
            quantity, unit_price, discount_amount, tax_amount, total_amount, created_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            item["id"],
            item["order_id"],
            item["position"],
            item["variant_id"],
            item["product_name"],
            item.get("variant_name"),
            item.get("sku"),
            item["quantity"],
            item["unit_price"],
            item["discount_amount"],
            item["tax_amount"],
            item["total_amount"],
            item["created_at"],
        ),
    )


async def insert_allocation(
    db: Executor,
    *,
    allocation_id: str,
    order_item_id: str,
    inventory_id: str,
    warehouse_id: str,
    quantity: int,
    created_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO order_item_allocations (
            id, order_item_id, inventory_id, warehouse_id, quantity, created_at
        ) VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (allocation_id, order_item_id, inventory_id, warehouse_id, quantity, created_at),
    )


async def list_allocations(db: Executor, order_id: str) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT a.id, a.order_item_id, a.inventory_id, a.warehouse_id, a.quantity
        FROM order_item_allocations a
        JOIN order_items oi ON oi.id = a.order_item_id
        WHERE oi.order_id = %s
        """,
        (order_id,),
    )
    return [normalise(row, ints=("quantity",)) for row in rows]


async def get_order(db: Executor, order_id: str, *, for_update: bool = False) -> dict[str, Any] | None:
    lock = db.lock_clause if for_update else ""
    row = await db.fetch_one(f"SELECT * FROM orders WHERE id = %s{lock}", (order_id,))
    return _normalise_order(row)


async def get_order_by_number(db: Executor, order_number: str) -> dict[str, Any] | None:
    row = await db.fetch_one("SELECT * FROM orders WHERE order_number = %s", (order_number,))
    return _normalise_order(row)


async def get_order_with_customer(db: Executor, order_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one(
        """
        SELECT o.*, u.email AS customer_email, u.first_name AS customer_first_name,
               u.last_name AS customer_last_name, u.phone AS customer_phone
        FROM orders o
        LEFT JOIN users u ON u.id = o.customer_id
        WHERE o.id = %s
        """,
        (order_id,),
    )
    return _normalise_order(row)


async def list_order_items(db: Executor, order_id: str) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT oi.*, pv.product_id
        FROM order_items oi
        LEFT JOIN product_variants pv ON pv.id = oi.variant_id
        WHERE oi.order_id = %s
        ORDER BY oi.position
        """,
        (order_id,),
    )
    return [_normalise_item(row) for row in rows]


def _order_filters(filters: OrderFilters) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if filters.customer_id:
        clauses.append("o.customer_id = %s")
        params.append(filters.customer_id)
    if filters.status:
        clauses.append("o.status = %s")
        params.append(filters.status)
    if filters.payment_status:
        clauses.append("o.payment_status = %s")
        params.append(filters.payment_status)
    if filters.date_from:
        clauses.append("o.created_at >= %s")
        params.append(filters.date_from)
    if filters.date_to:
        clauses.append("o.created_at <= %s")
        params.append(filters.date_to)
    if filters.search:
        clauses.append("(o.order_number LIKE %s OR u.email LIKE %s)")
        term = like(filters.search)
        params.extend([term, term])
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


async def list_orders(
    db: Executor,
    filters: OrderFilters,
    *,
    sort_by: str,
    sort_desc: bool,
    limit: int,
    offset: int,
) -> list[dict[str, Any]]:
    where, params = _order_filters(filters)
    order_column = ORDER_SORT_COLUMNS.get(sort_by, "o.created_at")
    direction = "DESC" if sort_desc else "ASC"
    rows = await db.fetch_all(
        f"""
        SELECT o.*, u.email AS customer_email, u.first_name AS customer_first_name,
               u.last_name AS customer_last_name,
               (SELECT COUNT(*) FROM order_items oi WHERE oi.order_id = o.id) AS item_count
        FROM orders o
        LEFT JOIN users u ON u.id = o.customer_id
        {where}
        ORDER BY {order_column} {direction}
        LIMIT %s OFFSET %s
        """,
        (*params, limit, offset),
    )
    return [_normalise_order(row) for row in rows]


async def count_orders(db: Executor, filters: OrderFilters) -> int:
    where, params = _order_filters(filters)
    row = await db.fetch_one(
        f"SELECT COUNT(*) AS total FROM orders o LEFT JOIN users u ON u.id = o.customer_id{where}",
        params,
    )
    return int(row["total"]) if row else 0


async def update_status(
    db: Executor,
    order_id: str,
    *,
    status: str,
    processed_by: str | None,
    when: datetime,
    payment_status: str | None = None,
) -> int:
    assignments = ["status = %s", "processed_by = %s", "updated_at = %s"]
    params: list[Any] = [status, processed_by, when]
    column = STATUS_TIMESTAMP_COLUMNS.get(status)
    if column:
        assignments.append(f"{column} = %s")
        params.append(when)
    if payment_status:
        assignments.append("payment_status = %s")
        params.append(payment_status)
    params.append(order_id)
    return await db.execute(
        f"UPDATE orders SET {', '.join(assignments)} WHERE id = %s",
        params,
    )


async def mark_paid(db: Executor, order_id: str, when: datetime) -> int:
    return await db.execute(
        "UPDATE orders SET payment_status = 'paid', paid_at = %s, updated_at = %s WHERE id = %s",
        (when, when, order_id),
    )


async def order_statistics(
    db: Executor,
    *,
    customer_id: str | None,
    date_from: datetime | None,
    date_to: datetime | None,
) -> dict[str, Any]:
    clauses: list[str] = []
    params: list[Any] = []
    if customer_id:
        clauses.append("customer_id = %s")
        params.append(customer_id)
    if date_from:
        clauses.append("created_at >= %s")
        params.append(date_from)
    if date_to:
        clauses.append("created_at <= %s")
        params.append(date_to)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    row = await db.fetch_one(
        f"""
        SELECT
            COUNT(*) AS total_orders,
            COALESCE(SUM(CASE WHEN status = 'delivered' THEN 1 ELSE 0 END), 0) AS completed_orders,
            COALESCE(SUM(CASE WHEN status = 'cancelled' THEN 1 ELSE 0 END), 0) AS cancelled_orders,
            COALESCE(SUM(CASE WHEN status NOT IN ('delivered', 'cancelled', 'refunded')
                THEN 1 ELSE 0 END), 0) AS pending_orders,
            COALESCE(SUM(CASE WHEN status = 'delivered' THEN total_amount END), 0) AS total_revenue,
            COALESCE(AVG(CASE WHEN status = 'delivered' THEN total_amount END), 0)
                AS average_order_value
        FROM orders{where}
        """,
        params,
    )
    return normalise(
        row or {},
        ints=("total_orders", "completed_orders", "cancelled_orders", "pending_orders"),
        money_fields=("total_revenue", "average_order_value"),
    )


async def count_product_order_items(db: Executor, product_id: str) -> int:
    row = await db.fetch_one(
        """
        SELECT COUNT(*) AS total
        FROM order_items oi
        JOIN product_variants pv ON pv.id = oi.variant_id
        WHERE pv.product_id = %s
        """,
        (product_id,),
    )
    return int(row["total"]) if row else 0


# Coupons


def _normalise_coupon(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        ints=("usage_limit", "used_count", "customer_limit"),
        money_fields=("discount_value", "minimum_amount"),
        bools=("is_active",),
        datetimes=("valid_from", "valid_until", "created_at"),
    )


async def get_redeemable_coupon(db: Executor, code: str, now: datetime) -> dict[str, Any] | None:
    lock = db.lock_clause
    row = await db.fetch_one(
        f"""
        SELECT * FROM coupons
        WHERE code = %s
          AND is_active = %s
          AND (valid_from IS NULL OR valid_from <= %s)
          AND (valid_until IS NULL OR valid_until >= %s)
          AND (usage_limit IS NULL OR used_count < usage_limit){lock}
        """,
        (code, True, now, now),
    )
    return _normalise_coupon(row)


async def count_coupon_usage(db: Executor, coupon_id: str, customer_id: str) -> int:
    row = await db.fetch_one(
        "SELECT COUNT(*) AS total FROM coupon_usage WHERE coupon_id = %s AND customer_id = %s",
        (coupon_id, customer_id),
    )
    return int(row["total"]) if row else 0


async def record_coupon_usage(
    db: Executor,
    *,
    usage_id: str,
    coupon_id: str,
    customer_id: str,
    order_id: str,
    discount_amount: Decimal,
    used_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO coupon_usage (id, coupon_id, customer_id, order_id, discount_amount, used_at)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (usage_id, coupon_id, customer_id, order_id, discount_amount, used_at),
    )
    await db.execute(
        "UPDATE coupons SET used_count = used_count + 1 WHERE id = %s",
        (coupon_id,),
    )


# Activity log


async def insert_activity_log(
    db: Executor,
    *,
    log_id: str,
    user_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str,
    old_values: Any,
    new_values: Any,
    created_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO activity_logs (
            id, user_id, action, entity_type, entity_id, old_values, new_values, created_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            log_id,
            user_id,
            action,
            entity_type,
            entity_id,
            dump_json(old_values),
            dump_json(new_values),
            created_at,
        ),
    )


async def list_activity(db: Executor, entity_type: str, entity_id: str) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT id, user_id, action, entity_type, entity_id, old_values, new_values, created_at
        FROM activity_logs
        WHERE entity_type = %s AND entity_id = %s
        ORDER BY created_at, id
        """,
        (entity_type, entity_id),
    )
    return [
        normalise(row, datetimes=("created_at",), json_fields=("old_values", "new_values"))
        for row in rows
    ]
