from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from medshop.api.dependencies.auth import require_admin, require_roles
from medshop.api.dependencies.services import get_category_service
from medshop.api.responses import success
from medshop.schemas.categories import (
    CategoryCreateRequest,
    CategoryReorderRequest,
    CategoryUpdateRequest,
)
from medshop.services.categories import CategoryService

router = APIRouter(prefix="/categories", tags=["Categories"])

require_category_editor = require_roles("admin", "staff")


@router.get("")
async def list_categories(
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    service: CategoryService = Depends(get_category_service),
) -> dict:
    return success(await service.get_tree(include_inactive))


@router.post("/reorder")
async def reorder_categories(
    payload: CategoryReorderRequest,
    _: dict = Depends(require_category_editor),
    service: CategoryService = Depends(get_category_service),
) -> dict:
    result = await service.reorder(
        [entry.model_dump() for entry in payload.categories]
    )
    return success(message=result["message"])


@router.get("/{category_id}")
async def get_category(
    category_id: str,
    service: CategoryService = Depends(get_category_service),
) -> dict:
    return success(await service.get_category(category_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreateRequest,
    _: dict = Depends(require_category_editor),
    service: CategoryService = Depends(get_category_service),
) -> dict:
    category = await service.create_category(**payload.model_dump())
    return success(category, message="Category created successfully")


@router.put("/{category_id}")
async def update_category(
    category_id: str,
    payload: CategoryUpdateRequest,
    _: dict = Depends(require_category_editor),
    service: CategoryService = Depends(get_category_service),
) -> dict:
    category = await service.update_category(category_id, payload.model_dump(exclude_unset=True))
    return success(category, message="Category updated successfully")


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    _: dict = Depends(require_admin),
    service: CategoryService = Depends(get_category_service),
) -> dict:
    result = await service.delete_category(category_id)
    return success(message=result["message"])
