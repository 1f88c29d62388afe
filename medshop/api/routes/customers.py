from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from medshop.api.dependencies.auth import require_manager, require_staff
from medshop.api.dependencies.services import get_customer_service
from medshop.api.responses import success
from medshop.schemas.customers import CustomerUpdateRequest
from medshop.services.customers import CustomerService

router = APIRouter(prefix="/customers", tags=["Customers"])


@router.get("")
async def list_customers(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: str | None = Query(default=None, max_length=100),
    _: dict = Depends(require_staff),
    service: CustomerService = Depends(get_customer_service),
) -> dict:
    result = await service.list_customers(search=search, page=page, limit=limit)
    return success(result["customers"], pagination=result["pagination"])


@router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    _: dict = Depends(require_staff),
    service: CustomerService = Depends(get_customer_service),
) -> dict:
    return success(await service.get_customer(customer_id))


@router.put("/{customer_id}")
async def update_customer(
    customer_id: str,
    payload: CustomerUpdateRequest,
    _: dict = Depends(require_manager),
    service: CustomerService = Depends(get_customer_service),
) -> dict:
    customer = await service.update_customer(
        customer_id,
        loyalty_points=payload.loyalty_points,
        notes=payload.notes,
    )
    return success(customer, message="Customer updated successfully")
