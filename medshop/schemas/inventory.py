from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class InventoryAdjustRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    warehouse_id: str = Field(alias="warehouseId", min_length=1)
    variant_id: str = Field(alias="variantId", min_length=1)
    quantity: int = Field(ge=0)
    type: Literal["in", "out", "adjustment"]
    notes: Optional[str] = Field(default=None, max_length=2000)
    reference_type: Optional[str] = Field(default=None, alias="referenceType", max_length=50)
    reference_id: Optional[str] = Field(default=None, alias="referenceId")


class InventoryTransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_warehouse_id: str = Field(alias="fromWarehouseId", min_length=1)
    to_warehouse_id: str = Field(alias="toWarehouseId", min_length=1)
    variant_id: str = Field(alias="variantId", min_length=1)
    quantity: int = Field(ge=1)
    notes: Optional[str] = Field(default=None, max_length=2000)


class StockCountEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    variant_id: str = Field(alias="variantId", min_length=1)
    actual_count: int = Field(alias="actualCount", ge=0)


class StockCountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    warehouse_id: str = Field(alias="warehouseId", min_length=1)
    counts: list[StockCountEntry] = Field(min_length=1)
