from __future__ import annotations

import inspect
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable

from medshop.core.database import Database, Session, utcnow
from medshop.core.errors import AppError
from medshop.core.logging import log_audit_event, log_warning
from medshop.repositories import inventory as inventory_repo
from medshop.repositories import products as product_repo
from medshop.repositories import warehouses as warehouse_repo
from medshop.repositories.rows import money, new_id
from medshop.services.pagination import page_window, pagination


ADJUSTMENT_TYPES = ("in", "out", "adjustment")


@dataclass(slots=True)
class StockAlert:
    variant_id: str
    warehouse_id: str
    current_stock: int
    threshold: int


StockAlertHook = Callable[[StockAlert], Awaitable[None] | None]


def log_stock_alert(alert: StockAlert) -> None:
    log_warning(
        "Low stock alert",
        variant_id=alert.variant_id,
        warehouse_id=alert.warehouse_id,
        current_stock=alert.current_stock,
        threshold=alert.threshold,
    )


def stock_urgency(quantity: int, threshold: int) -> str:
    if quantity == 0:
        return "critical"
    if quantity <= threshold / 2:
        return "high"
    return "medium"


def stock_percentage(quantity: int, threshold: int) -> int:
    if threshold <= 0:
        return 0
    return round(quantity / threshold * 100)


class InventoryService:
    """Per-warehouse stock levels and the movements between them.

    Every movement keeps ``product_variants.stock_quantity`` equal to the sum
    of the variant's warehouse rows and appends an ``inventory_transactions``
    entry. Low-stock alerts are delivered to ``alert_hook`` once the unit of
    work has committed.
    """

    def __init__(self, db: Database, *, alert_hook: StockAlertHook | None = None) -> None:
        self.db = db
        self.alert_hook = alert_hook or log_stock_alert

    async def _notify(self, alerts: list[StockAlert]) -> None:
        for alert in alerts:
            result = self.alert_hook(alert)
            if inspect.isawaitable(result):
                await result

    async def _adjust(
        self,
        session: Session,
        *,
        warehouse_id: str,
        variant_id: str,
        quantity: int,
        type: str,
        notes: str | None,
        reference_type: str | None,
        reference_id: str | None,
        user_id: str | None,
        now: datetime,
        alerts: list[StockAlert],
    ) -> dict[str, Any]:
        if type not in ADJUSTMENT_TYPES:
            raise AppError(f"Unknown adjustment type {type}", 400)
        if quantity < 0:
            raise AppError("Quantity cannot be negative", 400)
        if not await warehouse_repo.get_warehouse(session, warehouse_id):
            raise AppError("Warehouse not found", 404)
        if not await product_repo.get_variant(session, variant_id):
            raise AppError("Product variant not found", 404)

        row = await inventory_repo.get_inventory_row(
            session, warehouse_id, variant_id, for_update=True
        )
        if row is None:
            inventory_id = new_id()
            await inventory_repo.create_inventory_row(
                session,
                inventory_id=inventory_id,
                warehouse_id=warehouse_id,
                variant_id=variant_id,
                when=now,
            )
            current = 0
        else:
            inventory_id = row["id"]
            current = row["quantity"]

        if type == "in":
            new_quantity = current + quantity
        elif type == "out":
            if current < quantity:
                raise AppError("Insufficient inventory", 400)
            new_quantity = current - quantity
        else:
            new_quantity = quantity

        await inventory_repo.set_quantity(session, inventory_id, new_quantity, now)
        await inventory_repo.recompute_variant_stock(session, variant_id, now)
        await inventory_repo.insert_transaction(
            session,
            transaction_id=new_id(),
            warehouse_id=warehouse_id,
            variant_id=variant_id,
            type=type,
            quantity=quantity,
            quantity_before=current,
            quantity_after=new_quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by=user_id,
            created_at=now,
        )

        threshold = await inventory_repo.get_variant_threshold(session, variant_id)
        if threshold is not None and new_quantity <= threshold:
            alerts.append(StockAlert(variant_id, warehouse_id, new_quantity, threshold))

        return {
            "inventoryId": inventory_id,
            "warehouseId": warehouse_id,
            "variantId": variant_id,
            "previousQuantity": current,
            "newQuantity": new_quantity,
            "adjustment": quantity,
            "type": type,
        }

    async def adjust(
        self,
        *,
        warehouse_id: str,
        variant_id: str,
        quantity: int,
        type: str,
        notes: str | None = None,
        reference_type: str | None = None,
        reference_id: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        alerts: list[StockAlert] = []
        async with self.db.transaction() as session:
            result = await self._adjust(
                session,
                warehouse_id=warehouse_id,
                variant_id=variant_id,
                quantity=quantity,
                type=type,
                notes=notes,
                reference_type=reference_type,
                reference_id=reference_id,
                user_id=user_id,
                now=utcnow(),
                alerts=alerts,
            )

        log_audit_event(
            "inventory",
            "adjust",
            user_id=user_id,
            entity_type="inventory",
            entity_id=result["inventoryId"],
            type=type,
            quantity_before=result["previousQuantity"],
            quantity_after=result["newQuantity"],
        )
        await self._notify(alerts)
        return result

    async def transfer(
        self,
        *,
        from_warehouse_id: str,
        to_warehouse_id: str,
        variant_id: str,
        quantity: int,
        notes: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        if from_warehouse_id == to_warehouse_id:
            raise AppError("Source and destination warehouses must differ", 400)
        if quantity <= 0:
            raise AppError("Quantity must be at least 1", 400)

        transfer_id = new_id()
        now = utcnow()
        alerts: list[StockAlert] = []
        async with self.db.transaction() as session:
            source = await inventory_repo.get_inventory_row(
                session, from_warehouse_id, variant_id, for_update=True
            )
            if not source or source["quantity"] < quantity:
                raise AppError("Insufficient inventory in source warehouse", 400)

            await self._adjust(
                session,
                warehouse_id=from_warehouse_id,
                variant_id=variant_id,
                quantity=quantity,
                type="out",
                notes=notes or f"Transfer to warehouse {to_warehouse_id}",
                reference_type="transfer",
                reference_id=transfer_id,
                user_id=user_id,
                now=now,
                alerts=alerts,
            )
            await self._adjust(
                session,
                warehouse_id=to_warehouse_id,
                variant_id=variant_id,
                quantity=quantity,
                type="in",
                notes=notes or f"Transfer from warehouse {from_warehouse_id}",
                reference_type="transfer",
                reference_id=transfer_id,
                user_id=user_id,
                now=now,
                alerts=alerts,
            )

        log_audit_event(
            "inventory",
            "transfer",
            user_id=user_id,
            entity_type="variant",
            entity_id=variant_id,
            from_warehouse=from_warehouse_id,
            to_warehouse=to_warehouse_id,
            quantity=quantity,
        )
        await self._notify(alerts)
        return {
            "message": "Inventory transferred successfully",
            "transferId": transfer_id,
            "fromWarehouse": from_warehouse_id,
            "toWarehouse": to_warehouse_id,
            "variantId": variant_id,
            "quantity": quantity,
        }

    async def stock_count(
        self,
        warehouse_id: str,
        counts: list[dict[str, Any]],
        *,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        now = utcnow()
        alerts: list[StockAlert] = []
        discrepancies: list[dict[str, Any]] = []
        async with self.db.transaction() as session:
            if not await warehouse_repo.get_warehouse(session, warehouse_id):
                raise AppError("Warehouse not found", 404)
            for count in counts:
                variant_id = count["variant_id"]
                actual = int(count["actual_count"])
                row = await inventory_repo.get_inventory_row(
                    session, warehouse_id, variant_id, for_update=True
                )
                if row is None:
                    continue
                expected = row["quantity"]
                if actual != expected:
                    discrepancies.append(
                        {
                            "variantId": variant_id,
                            "expected": expected,
                            "actual": actual,
                            "difference": actual - expected,
                        }
                    )
                    await self._adjust(
                        session,
                        warehouse_id=warehouse_id,
                        variant_id=variant_id,
                        quantity=actual,
                        type="adjustment",
                        notes=f"Stock count adjustment: Expected {expected}, Actual {actual}",
                        reference_type="stock_count",
                        reference_id=None,
                        user_id=user_id,
                        now=now,
                        alerts=alerts,
                    )
                await inventory_repo.mark_counted(session, row["id"], now)

        log_audit_event(
            "inventory",
            "stock_count",
            user_id=user_id,
            entity_type="warehouse",
            entity_id=warehouse_id,
            counted=len(counts),
            discrepancies=len(discrepancies),
        )
        await self._notify(alerts)
        return {
            "itemsCounted": len(counts),
            "discrepanciesFound": len(discrepancies),
            "discrepancies": discrepancies,
        }

    async def list_inventory(
        self,
        *,
        warehouse_id: str | None = None,
        variant_id: str | None = None,
        product_id: str | None = None,
        low_stock: bool = False,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "updated_at",
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        filters = inventory_repo.InventoryFilters(
            warehouse_id=warehouse_id,
            variant_id=variant_id,
            product_id=product_id,
            low_stock=low_stock,
            search=search,
        )
        page, limit, offset = page_window(page, limit)
        rows = await inventory_repo.list_inventory(
            self.db,
            filters,
            sort_by=sort_by,
            sort_desc=sort_order.lower() != "asc",
            limit=limit,
            offset=offset,
        )
        for row in rows:
            row["isLowStock"] = row["quantity"] <= row["low_stock_threshold"]
        total = await inventory_repo.count_inventory(self.db, filters)
        return {"inventory": rows, "pagination": pagination(page, limit, total)}

    async def low_stock(self, *, warehouse_id: str | None = None) -> list[dict[str, Any]]:
        rows = await inventory_repo.list_low_stock(self.db, warehouse_id=warehouse_id)
        for row in rows:
            threshold = row["low_stock_threshold"]
            row["stockPercentage"] = stock_percentage(row["quantity"], threshold)
            row["urgency"] = stock_urgency(row["quantity"], threshold)
        rows.sort(key=lambda row: (row["stockPercentage"], row["quantity"]))
        return rows

    async def transactions(
        self,
        *,
        warehouse_id: str | None = None,
        variant_id: str | None = None,
        type: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        user_id: str | None = None,
        page: int = 1,
        limit: int = 50,
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        filters = inventory_repo.TransactionFilters(
            warehouse_id=warehouse_id,
            variant_id=variant_id,
            type=type,
            date_from=date_from,
            date_to=date_to,
            user_id=user_id,
        )
        page, limit, offset = page_window(page, limit)
        rows = await inventory_repo.list_transactions(
            self.db,
            filters,
            sort_desc=sort_order.lower() != "asc",
            limit=limit,
            offset=offset,
        )
        total = await inventory_repo.count_transactions(self.db, filters)
        return {"transactions": rows, "pagination": pagination(page, limit, total)}

    async def valuation(self, *, warehouse_id: str | None = None) -> dict[str, Any]:
        positions = await inventory_repo.list_stock_positions(self.db, warehouse_id=warehouse_id)

        cost_total = Decimal(0)
        retail_total = Decimal(0)
        units = 0
        variants: set[str] = set()
        products: set[str] = set()
        categories: dict[str | None, dict[str, Any]] = {}
        for position in positions:
            quantity = position["quantity"]
            cost_value = (position["cost"] or Decimal(0)) * quantity
            retail_value = (position["price"] or Decimal(0)) * quantity
            cost_total += cost_value
            retail_total += retail_value
            units += quantity
            variants.add(position["variant_id"])
            products.add(position["product_id"])

            bucket = categories.setdefault(
                position.get("category_id"),
                {
                    "category_name": position.get("category_name"),
                    "cost_value": Decimal(0),
                    "retail_value": Decimal(0),
                    "units": 0,
                },
            )
            bucket["cost_value"] += cost_value
            bucket["retail_value"] += retail_value
            bucket["units"] += quantity

        by_category = sorted(categories.values(), key=lambda item: item["retail_value"], reverse=True)
        for bucket in by_category:
            bucket["cost_value"] = money(bucket["cost_value"])
            bucket["retail_value"] = money(bucket["retail_value"])

        return {
            "summary": {
                "total_cost_value": money(cost_total),
                "total_retail_value": money(retail_total),
                "total_units": units,
                "total_variants": len(variants),
                "total_products": len(products),
            },
            "byCategory": by_category,
            "potentialProfit": money(retail_total - cost_total),
        }
