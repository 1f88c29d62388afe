from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import like, normalise

Executor = Database | Session

_CUSTOMER_SELECT = """
    SELECT
        c.id, c.customer_code, c.loyalty_points, c.total_spent, c.total_orders,
        c.notes, c.created_at, u.email, u.first_name, u.last_name, u.phone,
        u.status, u.last_login
    FROM customers c
    JOIN users u ON u.id = c.id
"""


def _normalise_customer(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        ints=("loyalty_points", "total_orders"),
        money_fields=("total_spent",),
        datetimes=("created_at", "last_login"),
    )


async def create_customer(
    db: Executor, *, customer_id: str, customer_code: str, created_at: datetime
) -> None:
    await db.execute(
        """
        INSERT INTO customers (id, customer_code, created_at, updated_at)
        VALUES (%s, %s, %s, %s)
        """,
        (customer_id, customer_code, created_at, created_at),
    )


async def get_customer(db: Executor, customer_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one(f"{_CUSTOMER_SELECT} WHERE c.id = %s", (customer_id,))
    return _normalise_customer(row)


def _customer_filters(search: str | None) -> tuple[str, list[Any]]:
    if not search:
        return "", []
    term = like(search)
    return (
        " WHERE (u.email LIKE %s OR u.first_name LIKE %s OR u.last_name LIKE %s"
        " OR c.customer_code LIKE %s OR u.phone LIKE %s)",
        [term, term, term, term, term],
    )


async def list_customers(
    db: Executor, *, search: str | None, limit: int, offset: int
) -> list[dict[str, Any]]:
    where, params = _customer_filters(search)
    rows = await db.fetch_all(
        f"{_CUSTOMER_SELECT}{where} ORDER BY c.created_at DESC LIMIT %s OFFSET %s",
        (*params, limit, offset),
    )
    return [_normalise_customer(row) for row in rows]


async def count_customers(db: Executor, *, search: str | None) -> int:
    where, params = _customer_filters(search)
    row = await db.fetch_one(
        f"SELECT COUNT(*) AS total FROM customers c JOIN users u ON u.id = c.id{where}",
        params,
    )
    return int(row["total"]) if row else 0


async def update_customer(
    db: Executor,
    customer_id: str,
    *,
    loyalty_points: int | None,
    notes: str | None,
    when: datetime,
) -> int:
    assignments: list[str] = []
    params: list[Any] = []
    if loyalty_points is not None:
        assignments.append("loyalty_points = %s")
        params.append(loyalty_points)
    if notes is not None:
        assignments.append("notes = %s")
        params.append(notes)
    if not assignments:
        return 0
    assignments.append("updated_at = %s")
    params.extend([when, customer_id])
    return await db.execute(
        f"UPDATE customers SET {', '.join(assignments)} WHERE id = %s",
        params,
    )


async def record_order_totals(db: Executor, customer_id: str, amount: Decimal) -> None:
    await db.execute(
        """
        UPDATE customers
        SET total_spent = total_spent + %s, total_orders = total_orders + 1
        WHERE id = %s
        """,
        (amount, customer_id),
    )


async def get_address(db: Executor, address_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one(
        """
        SELECT id, customer_id, recipient_name, phone, address_line, ward, district,
               city, postal_code, is_default
        FROM customer_addresses
        WHERE id = %s
        """,
        (address_id,),
    )
    return normalise(row, bools=("is_default",))


async def get_loyalty_points(
    db: Executor, customer_id: str, *, for_update: bool = False
) -> int | None:
    lock = db.lock_clause if for_update else ""
    row = await db.fetch_one(
        f"SELECT loyalty_points FROM customers WHERE id = %s{lock}", (customer_id,)
    )
    return int(row["loyalty_points"]) if row else None


async def adjust_loyalty_points(
    db: Executor, customer_id: str, delta: int, when: datetime
) -> int:
    """Add ``delta`` points (negative to deduct), never going below zero."""
    return await db.execute(
        """
        UPDATE customers
        SET loyalty_points = CASE
                WHEN loyalty_points + %s < 0 THEN 0
                ELSE loyalty_points + %s
            END,
            updated_at = %s
        WHERE id = %s
        """,
        (delta, delta, when, customer_id),
    )
