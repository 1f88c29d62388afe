from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query

from medshop.api.dependencies.auth import require_manager, require_staff
from medshop.api.dependencies.services import get_analytics_service, get_inventory_service
from medshop.api.responses import success
from medshop.schemas.inventory import (
    InventoryAdjustRequest,
    InventoryTransferRequest,
    StockCountRequest,
)
from medshop.services.analytics import AnalyticsService
from medshop.services.inventory import InventoryService

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.get("")
async def list_inventory(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    warehouse_id: str | None = Query(default=None, alias="warehouseId"),
    variant_id: str | None = Query(default=None, alias="variantId"),
    product_id: str | None = Query(default=None, alias="productId"),
    low_stock: bool = Query(default=False, alias="lowStock"),
    search: str | None = Query(default=None, max_length=100),
    sort_by: str = Query(default="updated_at", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    _: dict = Depends(require_staff),
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    result = await service.list_inventory(
        warehouse_id=warehouse_id,
        variant_id=variant_id,
        product_id=product_id,
        low_stock=low_stock,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return success(result["inventory"], pagination=result["pagination"])


@router.get("/low-stock")
async def low_stock(
    warehouse_id: str | None = Query(default=None, alias="warehouseId"),
    _: dict = Depends(require_staff),
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    return success(await service.low_stock(warehouse_id=warehouse_id))


@router.get("/transactions")
async def inventory_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    warehouse_id: str | None = Query(default=None, alias="warehouseId"),
    variant_id: str | None = Query(default=None, alias="variantId"),
    type_filter: Literal["in", "out", "adjustment"] | None = Query(default=None, alias="type"),
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    user_id: str | None = Query(default=None, alias="userId"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    _: dict = Depends(require_staff),
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    result = await service.transactions(
        warehouse_id=warehouse_id,
        variant_id=variant_id,
        type=type_filter,
        date_from=date_from,
        date_to=date_to,
        user_id=user_id,
        page=page,
        limit=limit,
        sort_order=sort_order,
    )
    return success(result["transactions"], pagination=result["pagination"])


@router.get("/valuation")
async def inventory_valuation(
    warehouse_id: str | None = Query(default=None, alias="warehouseId"),
    _: dict = Depends(require_manager),
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    return success(await service.valuation(warehouse_id=warehouse_id))


@router.get("/report")
async def inventory_report(
    _: dict = Depends(require_manager),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> dict:
    return success(await analytics.inventory_report())


@router.post("/adjust")
async def adjust_inventory(
    payload: InventoryAdjustRequest,
    current_user: dict = Depends(require_manager),
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    result = await service.adjust(
        warehouse_id=payload.warehouse_id,
        variant_id=payload.variant_id,
        quantity=payload.quantity,
        type=payload.type,
        notes=payload.notes,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        user_id=current_user["id"],
    )
    return success(result, message="Inventory adjusted successfully")


@router.post("/transfer")
async def transfer_inventory(
    payload: InventoryTransferRequest,
    current_user: dict = Depends(require_manager),
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    result = await service.transfer(
        from_warehouse_id=payload.from_warehouse_id,
        to_warehouse_id=payload.to_warehouse_id,
        variant_id=payload.variant_id,
        quantity=payload.quantity,
        notes=payload.notes,
        user_id=current_user["id"],
    )
    return success(result, message="Inventory transferred successfully")


@router.post("/stock-count")
async def stock_count(
    payload: StockCountRequest,
    current_user: dict = Depends(require_manager),
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    result = await service.stock_count(
        payload.warehouse_id,
        [entry.model_dump() for entry in payload.counts],
        user_id=current_user["id"],
    )
    return success(result, message="Stock count completed")
