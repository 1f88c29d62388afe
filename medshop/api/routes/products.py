from __future__ import annotations

from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, Query, status

from medshop.api.dependencies.auth import require_admin, require_manager
from medshop.api.dependencies.services import get_product_service
from medshop.api.responses import success
from medshop.schemas.products import (
    ProductCreateRequest,
    ProductStatus,
    ProductUpdateRequest,
    VariantCreateRequest,
)
from medshop.services.products import ProductService

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("")
async def list_products(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    category_id: str | None = Query(default=None, alias="categoryId"),
    brand_id: str | None = Query(default=None, alias="brandId"),
    status_filter: ProductStatus | None = Query(default="active", alias="status"),
    min_price: Decimal | None = Query(default=None, alias="minPrice", ge=0),
    max_price: Decimal | None = Query(default=None, alias="maxPrice", ge=0),
    search: str | None = Query(default=None),
    sort_by: str = Query(default="created_at", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    service: ProductService = Depends(get_product_service),
) -> dict:
    result = await service.list_products(
        category_id=category_id,
        brand_id=brand_id,
        status=status_filter,
        min_price=min_price,
        max_price=max_price,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return success(result["products"], pagination=result["pagination"])


@router.get("/search")
async def search_products(
    q: str = Query(default="", max_length=100),
    limit: int = Query(default=10, ge=1, le=50),
    service: ProductService = Depends(get_product_service),
) -> dict:
    return success(await service.search_products(q, limit))


@router.get("/{product_id}")
async def get_product(
    product_id: str,
    service: ProductService = Depends(get_product_service),
) -> dict:
    return success(await service.get_product(product_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreateRequest,
    current_user: dict = Depends(require_manager),
    service: ProductService = Depends(get_product_service),
) -> dict:
    product = await service.create_product(payload.model_dump(), current_user["id"])
    return success(product, message="Product created successfully")


@router.put("/{product_id}")
async def update_product(
    product_id: str,
    payload: ProductUpdateRequest,
    _: dict = Depends(require_manager),
    service: ProductService = Depends(get_product_service),
) -> dict:
    product = await service.update_product(product_id, payload.model_dump(exclude_unset=True))
    return success(product, message="Product updated successfully")


@router.delete("/{product_id}")
async def delete_product(
    product_id: str,
    _: dict = Depends(require_admin),
    service: ProductService = Depends(get_product_service),
) -> dict:
    result = await service.delete_product(product_id)
    return success(message=result["message"])


@router.post("/{product_id}/variants", status_code=status.HTTP_201_CREATED)
async def create_variant(
    product_id: str,
    payload: VariantCreateRequest,
    _: dict = Depends(require_manager),
    service: ProductService = Depends(get_product_service),
) -> dict:
    variant = await service.create_variant(product_id, payload.model_dump())
    return success(variant, message="Variant created successfully")
