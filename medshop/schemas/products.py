from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ProductStatus = Literal["active", "inactive", "draft", "out_of_stock"]


class ProductCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    sku: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    short_description: Optional[str] = Field(default=None, alias="shortDescription", max_length=500)
    category_id: Optional[str] = Field(default=None, alias="categoryId")
    brand_id: Optional[str] = Field(default=None, alias="brandId")
    supplier_id: Optional[str] = Field(default=None, alias="supplierId")
    status: ProductStatus = "draft"
    is_featured: bool = Field(default=False, alias="isFeatured")
    warranty_months: int = Field(default=12, alias="warrantyMonths", ge=0)
    tags: Optional[list[str]] = None
    meta_title: Optional[str] = Field(default=None, alias="metaTitle", max_length=255)
    meta_description: Optional[str] = Field(default=None, alias="metaDescription")


class ProductUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    sku: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    short_description: Optional[str] = Field(default=None, alias="shortDescription", max_length=500)
    category_id: Optional[str] = Field(default=None, alias="categoryId")
    brand_id: Optional[str] = Field(default=None, alias="brandId")
    supplier_id: Optional[str] = Field(default=None, alias="supplierId")
    status: Optional[ProductStatus] = None
    is_featured: Optional[bool] = Field(default=None, alias="isFeatured")
    warranty_months: Optional[int] = Field(default=None, alias="warrantyMonths", ge=0)
    tags: Optional[list[str]] = None
    meta_title: Optional[str] = Field(default=None, alias="metaTitle", max_length=255)
    meta_description: Optional[str] = Field(default=None, alias="metaDescription")


class VariantCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sku: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    barcode: Optional[str] = Field(default=None, max_length=100)
    price: Decimal = Field(ge=0)
    cost: Decimal = Field(default=Decimal(0), ge=0)
    compare_price: Optional[Decimal] = Field(default=None, alias="comparePrice", ge=0)
    stock_quantity: int = Field(default=0, alias="stockQuantity", ge=0)
    low_stock_threshold: int = Field(default=10, alias="lowStockThreshold", ge=0)
    weight: Optional[Decimal] = Field(default=None, ge=0)
    attributes: Optional[dict[str, Any]] = None
    is_active: bool = Field(default=True, alias="isActive")
