from __future__ import annotations

from typing import Any

from medshop.core.database import Database, utcnow
from medshop.core.errors import AppError
from medshop.repositories import customers as customer_repo
from medshop.services.pagination import page_window, pagination


class CustomerService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_customers(
        self, *, search: str | None = None, page: int = 1, limit: int = 20
    ) -> dict[str, Any]:
        page, limit, offset = page_window(page, limit)
        customers = await customer_repo.list_customers(
            self.db, search=search, limit=limit, offset=offset
        )
        total = await customer_repo.count_customers(self.db, search=search)
        return {"customers": customers, "pagination": pagination(page, limit, total)}

    async def get_customer(self, customer_id: str) -> dict[str, Any]:
        customer = await customer_repo.get_customer(self.db, customer_id)
        if not customer:
            raise AppError("Customer not found", 404)
        return customer

    async def update_customer(
        self,
        customer_id: str,
        *,
        loyalty_points: int | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        if loyalty_points is None and notes is None:
            raise AppError("No fields to update", 400)
        if loyalty_points is not None and loyalty_points < 0:
            raise AppError("Loyalty points cannot be negative", 400)

        async with self.db.transaction() as session:
            if not await customer_repo.get_customer(session, customer_id):
                raise AppError("Customer not found", 404)
            await customer_repo.update_customer(
                session,
                customer_id,
                loyalty_points=loyalty_points,
                notes=notes,
                when=utcnow(),
            )
            return await customer_repo.get_customer(session, customer_id)
