from __future__ import annotations

from typing import Any

from medshop.core.database import Database, utcnow
from medshop.core.errors import AppError
from medshop.core.logging import log_info
from medshop.repositories import warehouses as warehouse_repo
from medshop.repositories.rows import new_id


class WarehouseService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_warehouses(self, *, include_inactive: bool = False) -> list[dict[str, Any]]:
        return await warehouse_repo.list_warehouses(self.db, include_inactive=include_inactive)

    async def get_warehouse(self, warehouse_id: str) -> dict[str, Any]:
        warehouse = await warehouse_repo.get_warehouse(self.db, warehouse_id)
        if not warehouse:
            raise AppError("Warehouse not found", 404)
        return warehouse

    async def create_warehouse(
        self,
        *,
        code: str,
        name: str,
        address: str | None = None,
        phone: str | None = None,
        is_active: bool = True,
    ) -> dict[str, Any]:
        code = code.strip().upper()
        warehouse_id = new_id()
        async with self.db.transaction() as session:
            if await warehouse_repo.get_warehouse_by_code(session, code):
                raise AppError(f"Warehouse code {code} already exists", 400)
            await warehouse_repo.create_warehouse(
                session,
                warehouse_id=warehouse_id,
                code=code,
                name=name,
                address=address,
                phone=phone,
                is_active=is_active,
                created_at=utcnow(),
            )
            warehouse = await warehouse_repo.get_warehouse(session, warehouse_id)

        log_info("Warehouse created", warehouse_id=warehouse_id, code=code)
        return warehouse
