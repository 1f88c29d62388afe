from __future__ import annotations

from datetime import datetime
from typing import Any

from medshop.core.database import Database, Session
from medshop.repositories.rows import normalise

Executor = Database | Session


def _normalise_warehouse(row: dict[str, Any] | None) -> dict[str, Any] | None:
    return normalise(
        row,
        ints=("variant_count", "total_units"),
        bools=("is_active",),
        datetimes=("created_at", "updated_at"),
    )


async def list_warehouses(db: Executor, *, include_inactive: bool = False) -> list[dict[str, Any]]:
    where = "" if include_inactive else " WHERE w.is_active = %s"
    params: tuple = () if include_inactive else (True,)
    rows = await db.fetch_all(
        f"""
        SELECT w.id, w.code, w.name, w.address, w.phone, w.is_active, w.created_at,
               w.updated_at,
               (SELECT COUNT(*) FROM inventory i WHERE i.warehouse_id = w.id) AS variant_count,
               (SELECT COALESCE(SUM(i.quantity), 0) FROM inventory i
                WHERE i.warehouse_id = w.id) AS total_units
        FROM warehouses w{where}
        ORDER BY w.name
        """,
        params,
    )
    return [_normalise_warehouse(row) for row in rows]


async def get_warehouse(db: Executor, warehouse_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one(
        """
        SELECT id, code, name, address, phone, is_active, created_at, updated_at
        FROM warehouses
        WHERE id = %s
        """,
        (warehouse_id,),
    )
    return _normalise_warehouse(row)


async def get_warehouse_by_code(db: Executor, code: str) -> dict[str, Any] | None:
    row = await db.fetch_one(
        "SELECT id, code, name, is_active FROM warehouses WHERE code = %s", (code,)
    )
    return _normalise_warehouse(row)


async def create_warehouse(
    db: Executor,
    *,
    warehouse_id: str,
    code: str,
    name: str,
    address: str | None,
    phone: str | None,
    is_active: bool,
    created_at: datetime,
) -> None:
    await db.execute(
        """
        INSERT INTO warehouses (id, code, name, address, phone, is_active, created_at, updated_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (warehouse_id, code, name, address, phone, is_active, created_at, created_at),
    )
