from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    image_url: Optional[str] = Field(default=None, alias="imageUrl", max_length=500)
    display_order: int = Field(default=0, alias="displayOrder")
    is_active: bool = Field(default=True, alias="isActive")


class CategoryUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    image_url: Optional[str] = Field(default=None, alias="imageUrl", max_length=500)
    display_order: Optional[int] = Field(default=None, alias="displayOrder")
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class CategoryOrderEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    display_order: int = Field(alias="displayOrder")


class CategoryReorderRequest(BaseModel):
    categories: list[CategoryOrderEntry] = Field(min_length=1)
