from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from medshop.api.dependencies.auth import require_manager, require_staff
from medshop.api.dependencies.services import get_inventory_service, get_warehouse_service
from medshop.api.responses import success
from medshop.schemas.warehouses import WarehouseCreateRequest
from medshop.services.inventory import InventoryService
from medshop.services.warehouses import WarehouseService

router = APIRouter(prefix="/warehouses", tags=["Warehouses"])


@router.get("")
async def list_warehouses(
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    _: dict = Depends(require_staff),
    service: WarehouseService = Depends(get_warehouse_service),
) -> dict:
    return success(await service.list_warehouses(include_inactive=include_inactive))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_warehouse(
    payload: WarehouseCreateRequest,
    _: dict = Depends(require_manager),
    service: WarehouseService = Depends(get_warehouse_service),
) -> dict:
    warehouse = await service.create_warehouse(**payload.model_dump())
    return success(warehouse, message="Warehouse created successfully")


@router.get("/{warehouse_id}")
async def get_warehouse(
    warehouse_id: str,
    _: dict = Depends(require_staff),
    service: WarehouseService = Depends(get_warehouse_service),
) -> dict:
    return success(await service.get_warehouse(warehouse_id))


@router.get("/{warehouse_id}/inventory")
async def warehouse_inventory(
    warehouse_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _: dict = Depends(require_staff),
    warehouses: WarehouseService = Depends(get_warehouse_service),
    inventory: InventoryService = Depends(get_inventory_service),
) -> dict:
    await warehouses.get_warehouse(warehouse_id)
    result = await inventory.list_inventory(warehouse_id=warehouse_id, page=page, limit=limit)
    return success(result["inventory"], pagination=result["pagination"])
